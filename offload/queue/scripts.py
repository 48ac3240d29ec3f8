"""
Lua scripts executed atomically by the store.

Every state transition is one script, so the precondition check (state,
ownership) and its effect can never interleave with another client.
"""

# KEYS: job, history, queue, seq
# ARGV: job id, events prefix, signal channel, priority span,
#       then the job record as field/value pairs
ENQUEUE = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return false
end
local seq = redis.call('INCR', KEYS[4])
for i = 5, #ARGV, 2 do
  redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
redis.call('HSET', KEYS[1], 'seq', seq)
local priority = tonumber(redis.call('HGET', KEYS[1], 'priority'))
redis.call('ZADD', KEYS[3], seq - priority * tonumber(ARGV[4]), ARGV[1])
redis.call('RPUSH', KEYS[2], 'created', 'queued')
redis.call('PUBLISH', ARGV[2] .. ARGV[1], 'queued')
redis.call('PUBLISH', ARGV[3], ARGV[1])
return seq
"""

# KEYS: queue, active
# ARGV: job prefix, history prefix, events prefix, worker id, now
CLAIM = """
while true do
  local popped = redis.call('ZPOPMIN', KEYS[1])
  if #popped == 0 then
    return false
  end
  local id = popped[1]
  local key = ARGV[1] .. id
  if redis.call('HGET', key, 'state') == 'queued' then
    redis.call('HSET', key, 'state', 'active', 'owner', ARGV[4], 'started_at', ARGV[5])
    redis.call('ZADD', KEYS[2], ARGV[5], id)
    redis.call('RPUSH', ARGV[2] .. id, 'active')
    redis.call('PUBLISH', ARGV[3] .. id, 'active')
    return redis.call('HGETALL', key)
  end
end
"""

# KEYS: job, history, active
# ARGV: job id, worker id, new state, outcome field, outcome value,
#       now, events prefix
# Returns 1 on success, 0 on ownership mismatch, -1 if the job is gone.
FINALIZE = """
local state = redis.call('HGET', KEYS[1], 'state')
if not state then
  return -1
end
if state ~= 'active' or redis.call('HGET', KEYS[1], 'owner') ~= ARGV[2] then
  return 0
end
redis.call('HSET', KEYS[1], 'state', ARGV[3], ARGV[4], ARGV[5], 'finished_at', ARGV[6])
redis.call('HDEL', KEYS[1], 'owner')
redis.call('ZREM', KEYS[3], ARGV[1])
redis.call('RPUSH', KEYS[2], ARGV[3])
local ttl = tonumber(redis.call('HGET', KEYS[1], 'ttl') or '0')
if ttl > 0 then
  redis.call('EXPIRE', KEYS[1], ttl)
  redis.call('EXPIRE', KEYS[2], ttl)
end
redis.call('PUBLISH', ARGV[7] .. ARGV[1], ARGV[3])
return 1
"""

# KEYS: active
# ARGV: deadline, now, job prefix, history prefix, events prefix
# Returns the ids moved to timed_out.
SWEEP = """
local swept = {}
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
  local key = ARGV[3] .. id
  local state = redis.call('HGET', key, 'state')
  local started = tonumber(redis.call('HGET', key, 'started_at') or '0')
  redis.call('ZREM', KEYS[1], id)
  if state == 'active' and started <= tonumber(ARGV[1]) then
    redis.call('HSET', key, 'state', 'timed_out', 'finished_at', ARGV[2])
    redis.call('HDEL', key, 'owner')
    redis.call('RPUSH', ARGV[4] .. id, 'timed_out')
    local ttl = tonumber(redis.call('HGET', key, 'ttl') or '0')
    if ttl > 0 then
      redis.call('EXPIRE', key, ttl)
      redis.call('EXPIRE', ARGV[4] .. id, ttl)
    end
    redis.call('PUBLISH', ARGV[5] .. id, 'timed_out')
    swept[#swept + 1] = id
  end
end
return swept
"""

# KEYS: job, history, active
# ARGV: job id, queue prefix
REMOVE = """
local job_type = redis.call('HGET', KEYS[1], 'type')
if not job_type then
  redis.call('DEL', KEYS[2])
  return 0
end
redis.call('ZREM', ARGV[2] .. job_type, ARGV[1])
redis.call('ZREM', KEYS[3], ARGV[1])
redis.call('DEL', KEYS[1], KEYS[2])
return 1
"""
