"""Redis Lua code for the sliding window throttler.

The evaluate script runs trim, count, conditional insert and block marking
as one server-side execution, so concurrent callers on the same key can
never interleave between the check and the write (no TOCTOU race).

The same bodies are used either as EVAL scripts or, on Redis 7+, wrapped
into a Redis Functions library. Inside a library function ``KEYS`` and
``ARGV`` are ordinary parameters that shadow the script globals, so the
bodies need no changes.
"""

# KEYS[1] window sorted set, KEYS[2] block marker
# ARGV: now_ms, limit, window_ms, block_ms, member, max_window_size
# Returns {admitted, count, blocked_until_ms or -1, oldest_ms or -1}
SLIDING_WINDOW_BODY = """
    local window_key = KEYS[1]
    local block_key = KEYS[2]
    local now_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local window_ms = tonumber(ARGV[3])
    local block_ms = tonumber(ARGV[4])
    local member = ARGV[5]
    local max_size = tonumber(ARGV[6])

    if not now_ms or not limit or not window_ms or not block_ms or not max_size
        or member == nil or member == '' then
        return redis.error_reply('ERR windowguard: invalid arguments')
    end

    -- Inclusive lower bound: an entry exactly at window_start still counts
    local window_start = string.format('%d', now_ms - window_ms)

    local function oldest_entry()
        local oldest = redis.call('ZRANGEBYSCORE', window_key, window_start, '+inf',
            'WITHSCORES', 'LIMIT', 0, 1)
        if #oldest > 0 then
            return tonumber(oldest[2])
        end
        return -1
    end

    -- Active block short-circuits without touching the window
    local blocked_until = tonumber(redis.call('GET', block_key))
    if blocked_until and blocked_until > now_ms then
        local count = redis.call('ZCOUNT', window_key, window_start, '+inf')
        return {0, count, blocked_until, oldest_entry()}
    end

    redis.call('ZREMRANGEBYSCORE', window_key, '-inf', '(' .. window_start)
    local count = redis.call('ZCARD', window_key)

    local admitted = 0
    local block_result = -1
    if count < limit then
        redis.call('ZADD', window_key, ARGV[1], member)
        count = count + 1
        admitted = 1
    elseif block_ms > 0 then
        block_result = now_ms + block_ms
        redis.call('SET', block_key, string.format('%d', block_result), 'PX', block_ms)
    end

    -- Never keep more than max_size entries, oldest go first
    if count > max_size then
        redis.call('ZREMRANGEBYRANK', window_key, 0, count - max_size - 1)
        count = max_size
    end

    if count > 0 then
        redis.call('PEXPIRE', window_key, window_ms + block_ms)
    end

    return {admitted, count, block_result, oldest_entry()}
"""

# KEYS[1] window sorted set; ARGV[1] cutoff in milliseconds (exclusive)
# Returns number of removed entries
TRIM_BODY = """
    local removed = redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', '(' .. ARGV[1])
    if redis.call('ZCARD', KEYS[1]) == 0 then
        redis.call('DEL', KEYS[1])
    end
    return removed
"""

SLIDING_WINDOW_SCRIPT = SLIDING_WINDOW_BODY
TRIM_SCRIPT = TRIM_BODY

DEFAULT_LIBRARY_NAME = "windowguard"


def evaluate_function_name(library_name: str = DEFAULT_LIBRARY_NAME) -> str:
    return f"{library_name}_evaluate"


def trim_function_name(library_name: str = DEFAULT_LIBRARY_NAME) -> str:
    return f"{library_name}_trim"


def build_function_library(library_name: str = DEFAULT_LIBRARY_NAME) -> str:
    """Redis Functions library source exposing evaluate and trim."""
    return (
        f"#!lua name={library_name}\n"
        f"local function sliding_window_evaluate(KEYS, ARGV)\n{SLIDING_WINDOW_BODY}\nend\n"
        f"local function sliding_window_trim(KEYS, ARGV)\n{TRIM_BODY}\nend\n"
        f"redis.register_function('{evaluate_function_name(library_name)}', sliding_window_evaluate)\n"
        f"redis.register_function('{trim_function_name(library_name)}', sliding_window_trim)\n"
    )
