"""Lua scripts executed server-side so each broker transition is atomic.

Sorted-set scores for the waiting set are ``priority * 1e12 + seq`` and are always formatted with ``%.0f`` so that no
precision is lost when Lua converts numbers to strings.
"""

ENQUEUE = """
-- KEYS: job hash, waiting, delayed, seq
-- ARGV: job id, priority, run_at ('' when not delayed), field/value pairs...
local unpack = unpack or table.unpack
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
local seq = redis.call('INCR', KEYS[4])
local score = string.format('%.0f', tonumber(ARGV[2]) * 1e12 + seq)
redis.call('HSET', KEYS[1], unpack(ARGV, 4))
redis.call('HSET', KEYS[1], 'seq', seq, 'order_score', score)
if ARGV[3] ~= '' then
  redis.call('ZADD', KEYS[3], ARGV[3], ARGV[1])
else
  redis.call('ZADD', KEYS[2], score, ARGV[1])
end
return seq
"""

CLAIM = """
-- KEYS: waiting, delayed, active, paused, seq
-- ARGV: now, lease deadline, job hash prefix, claim token
local now = ARGV[1]
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now)
for _, id in ipairs(due) do
  local jk = ARGV[3] .. id
  redis.call('ZREM', KEYS[2], id)
  local seq = redis.call('INCR', KEYS[5])
  local score = string.format('%.0f', tonumber(redis.call('HGET', jk, 'priority')) * 1e12 + seq)
  redis.call('HSET', jk, 'state', 'waiting', 'run_at', '', 'seq', seq, 'order_score', score)
  redis.call('ZADD', KEYS[1], score, id)
end
local stalled = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', now)
for _, id in ipairs(stalled) do
  local jk = ARGV[3] .. id
  redis.call('ZREM', KEYS[3], id)
  redis.call('HSET', jk, 'state', 'waiting', 'progress', '0', 'lease_until', '', 'claim_token', '')
  redis.call('ZADD', KEYS[1], redis.call('HGET', jk, 'order_score'), id)
end
local claimed = ''
if redis.call('EXISTS', KEYS[4]) == 0 then
  local popped = redis.call('ZPOPMIN', KEYS[1])
  if popped[1] then
    claimed = popped[1]
    local jk = ARGV[3] .. claimed
    redis.call('ZADD', KEYS[3], ARGV[2], claimed)
    redis.call('HINCRBY', jk, 'attempts', 1)
    redis.call('HSET', jk, 'state', 'active', 'progress', '0', 'processed_at', now, 'lease_until', ARGV[2],
               'claim_token', ARGV[4])
  end
end
local result = {claimed}
for _, id in ipairs(stalled) do
  table.insert(result, id)
end
return result
"""

PROGRESS = """
-- KEYS: job hash, active
-- ARGV: job id, percent, lease deadline, claim token
if redis.call('HGET', KEYS[1], 'state') ~= 'active' or redis.call('HGET', KEYS[1], 'claim_token') ~= ARGV[4] then
  return -1
end
if tonumber(ARGV[2]) < tonumber(redis.call('HGET', KEYS[1], 'progress') or '0') then
  return 0
end
redis.call('HSET', KEYS[1], 'progress', ARGV[2], 'lease_until', ARGV[3])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

COMPLETE = """
-- KEYS: job hash, active, completed
-- ARGV: job id, now, result json, claim token
if redis.call('HGET', KEYS[1], 'state') ~= 'active' or redis.call('HGET', KEYS[1], 'claim_token') ~= ARGV[4] then
  return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HSET', KEYS[1], 'state', 'completed', 'finished_at', ARGV[2], 'result', ARGV[3], 'lease_until', '',
           'claim_token', '')
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[1])
return 1
"""

FAIL = """
-- KEYS: job hash, active, failed, delayed
-- ARGV: job id, now, error json, retryable ('1' or '0'), claim token
-- Returns {0} when the job was not active under the token, {1, attempts} when terminal, {2, attempts, delay_ms} when
-- retrying.
if redis.call('HGET', KEYS[1], 'state') ~= 'active' or redis.call('HGET', KEYS[1], 'claim_token') ~= ARGV[5] then
  return {0}
end
redis.call('ZREM', KEYS[2], ARGV[1])
local attempts = tonumber(redis.call('HGET', KEYS[1], 'attempts'))
local max_attempts = tonumber(redis.call('HGET', KEYS[1], 'max_attempts'))
if ARGV[4] == '1' and attempts < max_attempts then
  local delay = tonumber(redis.call('HGET', KEYS[1], 'backoff_ms')) * 2 ^ (attempts - 1)
  local run_at = string.format('%.0f', tonumber(ARGV[2]) + delay)
  redis.call('HSET', KEYS[1], 'state', 'delayed', 'run_at', run_at, 'error', ARGV[3], 'lease_until', '',
             'claim_token', '')
  redis.call('ZADD', KEYS[4], run_at, ARGV[1])
  return {2, attempts, string.format('%.0f', delay)}
end
redis.call('HSET', KEYS[1], 'state', 'failed', 'finished_at', ARGV[2], 'error', ARGV[3], 'lease_until', '',
           'claim_token', '')
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[1])
return {1, attempts}
"""

CANCEL = """
-- KEYS: job hash, waiting, delayed
-- ARGV: job id
local state = redis.call('HGET', KEYS[1], 'state')
if state == 'waiting' then
  redis.call('ZREM', KEYS[2], ARGV[1])
elseif state == 'delayed' then
  redis.call('ZREM', KEYS[3], ARGV[1])
else
  return 0
end
redis.call('DEL', KEYS[1])
return 1
"""
