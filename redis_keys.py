REDIS_META_KEY = "room:meta:{slug}" # room id - JSON room record
REDIS_MESSAGE_KEY = "room:message:{slug}:{message_id}" # room id + message id - JSON message, expires with TTL
REDIS_CONN_KEY = "conn:{connection_id}" # connection id - connection metadata hash
REDIS_USER_CONNS_KEY = "user:conns:{user_id}" # user id - set of connection IDs (secondary index)
REDIS_INSTANCE_CHANNEL = "instance:channel:{instance_id}" # server instance - pub/sub channel for remote delivery

# **Example `room:meta:{id}` record**
# - `id` = `{roomId}`
# - `location` = {"latitude": 40.7128, "longitude": -74.006}
# - `radius` = 500
# - `participants` = ["u1", "u2"] (creator first)
# - `lastActivity` = epoch millis
# - `status` = "active" | "closed"

# **Example `conn:{connectionId}` hash fields**
# - `connectionId`, `userId`, `instanceId`
# - `connectedAt` = epoch millis
# - `roomId` = set once the connection joins a room
