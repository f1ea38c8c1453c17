"""
Lua scripts for atomic Redis operations.
"""
from typing import List, Optional, Tuple

# Compare-and-set save of a JSON document guarded by a version counter.
# Returns {1, new_version} on success, {0, current_version} on mismatch.
SAVE_VERSIONED_SCRIPT = """
local doc_key = KEYS[1]
local version_key = KEYS[2]
local expected = tonumber(ARGV[1])
local payload = ARGV[2]
local ttl = tonumber(ARGV[3])

local current = tonumber(redis.call('GET', version_key) or '0')
if current ~= expected then
    return {0, current}
end

redis.call('SET', doc_key, payload, 'EX', ttl)
local new_version = redis.call('INCR', version_key)
redis.call('EXPIRE', version_key, ttl)

return {1, new_version}
"""

# Reserve stock for every order line or for none of them.
# ARGV holds product_id, quantity pairs. Returns 0 on success, otherwise the
# 1-based position of the first line that cannot be covered.
RESERVE_STOCK_SCRIPT = """
local stock_key = KEYS[1]
local line = 0

for i = 1, #ARGV, 2 do
    line = line + 1
    local available = tonumber(redis.call('HGET', stock_key, ARGV[i]) or '0')
    if available < tonumber(ARGV[i + 1]) then
        return line
    end
end

for i = 1, #ARGV, 2 do
    redis.call('HINCRBY', stock_key, ARGV[i], -tonumber(ARGV[i + 1]))
end

return 0
"""

# Count one coupon redemption unless the usage limit is already reached.
# ARGV[2] is the limit, -1 for none. Returns the new count, or -1 when full.
REDEEM_COUPON_SCRIPT = """
local usage_key = KEYS[1]
local code = ARGV[1]
local limit = tonumber(ARGV[2])

local used = tonumber(redis.call('HGET', usage_key, code) or '0')
if limit >= 0 and used >= limit then
    return -1
end

return redis.call('HINCRBY', usage_key, code, 1)
"""


class AtomicScripts:
    """Runs the Lua scripts through the RedisClient wrapper"""

    def __init__(self, redis_wrapper):
        """
        Initialize with RedisClient wrapper (not raw redis.Redis client)
        so scripts get the wrapper's retry logic and error handling
        """
        self.redis_wrapper = redis_wrapper

    def save_versioned(
        self,
        doc_key: str,
        version_key: str,
        expected_version: int,
        payload: str,
        ttl: int
    ) -> Tuple[bool, int]:
        """Execute versioned save; returns (saved, version)"""
        result = self.redis_wrapper.eval(
            SAVE_VERSIONED_SCRIPT,
            2,
            doc_key,
            version_key,
            str(expected_version),
            payload,
            str(ttl)
        )
        saved, version = result
        return int(saved) == 1, int(version)

    def reserve_stock(self, stock_key: str, lines: List[Tuple[str, int]]) -> Optional[int]:
        """Execute stock reservation; returns the 0-based index of the short line, or None"""
        args = []
        for product_id, quantity in lines:
            args.extend([product_id, str(quantity)])

        failed = int(self.redis_wrapper.eval(RESERVE_STOCK_SCRIPT, 1, stock_key, *args))
        return failed - 1 if failed else None

    def redeem_coupon(self, usage_key: str, code: str, usage_limit: Optional[int]) -> Optional[int]:
        """Execute coupon redemption; returns the new usage count, or None when the limit is reached"""
        limit = -1 if usage_limit is None else usage_limit
        used = int(self.redis_wrapper.eval(REDEEM_COUPON_SCRIPT, 1, usage_key, code, str(limit)))
        return None if used < 0 else used
