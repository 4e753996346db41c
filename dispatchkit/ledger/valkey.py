import json
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from dispatchkit.connectors.valkey import ValkeyConnector
from dispatchkit.errors import AlreadyResolved, CourierBusy, InvalidInput, NotFound
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.models import Assignment, AssignmentState, utcnow
from dispatchkit.settings import settings

# KEYS: assignment hash, candidates set, line pointer
# ARGV: id, order, line, shop, created_at, prefix, candidates json, candidate ids...
CREATE_SCRIPT = """
local prev = redis.call("get", KEYS[3])
if prev then
    local pkey = ARGV[6] .. ":assignment:" .. prev
    local prev_state = redis.call("hget", pkey, "state")
    if prev_state == "accepted" then
        return 0
    end
    if prev_state == "broadcast" then
        for _, c in ipairs(redis.call("smembers", pkey .. ":candidates")) do
            redis.call("srem", ARGV[6] .. ":offers:" .. c, prev)
        end
    end
end
redis.call("hset", KEYS[1],
    "order_id", ARGV[2], "shop_order_id", ARGV[3], "shop_id", ARGV[4],
    "candidates", ARGV[7], "state", "broadcast", "created_at", ARGV[5],
    "assignee", "", "accepted_at", "")
for i = 8, #ARGV do
    redis.call("sadd", KEYS[2], ARGV[i])
    redis.call("sadd", ARGV[6] .. ":offers:" .. ARGV[i], ARGV[1])
end
redis.call("set", KEYS[3], ARGV[1])
return 1
"""

# KEYS: assignment hash, candidates set, courier active key
# ARGV: id, courier, accepted_at, prefix
ACCEPT_SCRIPT = """
local f = redis.call("hmget", KEYS[1], "state", "order_id", "shop_order_id")
if not f[1] then
    return "not_found"
end
if f[1] ~= "broadcast" then
    return "resolved"
end
if redis.call("get", ARGV[4] .. ":line:" .. f[2] .. ":" .. f[3]) ~= ARGV[1] then
    return "resolved"
end
if redis.call("sismember", KEYS[2], ARGV[2]) == 0 then
    return "not_candidate"
end
if redis.call("exists", KEYS[3]) == 1 then
    return "busy"
end
redis.call("hset", KEYS[1], "state", "accepted", "assignee", ARGV[2], "accepted_at", ARGV[3])
redis.call("set", KEYS[3], ARGV[1])
for _, c in ipairs(redis.call("smembers", KEYS[2])) do
    redis.call("srem", ARGV[4] .. ":offers:" .. c, ARGV[1])
end
return "ok"
"""

# KEYS: courier active key
# ARGV: prefix, order, line
COMPLETE_SCRIPT = """
local id = redis.call("get", KEYS[1])
if not id then
    return false
end
local akey = ARGV[1] .. ":assignment:" .. id
local f = redis.call("hmget", akey, "order_id", "shop_order_id", "state")
if f[1] ~= ARGV[2] or f[2] ~= ARGV[3] or f[3] ~= "accepted" then
    return false
end
redis.call("hset", akey, "state", "completed")
redis.call("del", KEYS[1])
return id
"""


class ValkeyAssignmentLedger(AssignmentLedger):
    """
    Ledger backed by Valkey. Each transition is one Lua script, so the
    state check and the write cannot interleave with another client.

    Keys:
    - {prefix}:assignment:<id>              HASH record
    - {prefix}:assignment:<id>:candidates   SET of courier ids
    - {prefix}:line:<order>:<line>          current assignment id of a line
    - {prefix}:active:<courier>             accepted assignment id (at most one)
    - {prefix}:offers:<courier>             SET of open broadcasts offered; an id
                                            leaves every set when it is accepted
                                            or superseded
    """
    def __init__(self, connector: ValkeyConnector, prefix: Optional[str] = None):
        self.connector = connector
        self.prefix = prefix or settings.KEY_PREFIX

    def _assignment_key(self, assignment_id: str) -> str:
        return f"{self.prefix}:assignment:{assignment_id}"

    def _line_key(self, order_id: str, shop_order_id: str) -> str:
        return f"{self.prefix}:line:{order_id}:{shop_order_id}"

    def _active_key(self, courier_id: str) -> str:
        return f"{self.prefix}:active:{courier_id}"

    @staticmethod
    def _decode(assignment_id: str, fields: Dict[str, str]) -> Assignment:
        return Assignment(
            id=assignment_id,
            order_id=fields["order_id"],
            shop_order_id=fields["shop_order_id"],
            shop_id=fields["shop_id"],
            candidates=tuple(json.loads(fields["candidates"])),
            assignee=fields.get("assignee") or None,
            state=AssignmentState(fields["state"]),
            created_at=datetime.fromisoformat(fields["created_at"]),
            accepted_at=datetime.fromisoformat(fields["accepted_at"]) if fields.get("accepted_at") else None,
        )

    async def create(self, order_id: str, shop_order_id: str, shop_id: str,
                     candidates: Sequence[str]) -> Assignment:
        if not candidates:
            raise InvalidInput("cannot create an assignment without candidates")

        assignment = Assignment(
            id=uuid.uuid4().hex,
            order_id=order_id,
            shop_order_id=shop_order_id,
            shop_id=shop_id,
            candidates=tuple(dict.fromkeys(candidates)),
        )
        key = self._assignment_key(assignment.id)
        created = await self.connector.get_client().eval(
            CREATE_SCRIPT, 3,
            key, f"{key}:candidates", self._line_key(order_id, shop_order_id),
            assignment.id, order_id, shop_order_id, shop_id,
            assignment.created_at.isoformat(), self.prefix,
            json.dumps(list(assignment.candidates)), *assignment.candidates,
        )
        if not created:
            raise InvalidInput(f"line {shop_order_id} of order {order_id} is already accepted")
        return assignment

    async def accept(self, assignment_id: str, courier_id: str) -> Assignment:
        key = self._assignment_key(assignment_id)
        outcome = await self.connector.get_client().eval(
            ACCEPT_SCRIPT, 3,
            key, f"{key}:candidates", self._active_key(courier_id),
            assignment_id, courier_id, utcnow().isoformat(), self.prefix,
        )
        if outcome == "not_found":
            raise NotFound(f"assignment {assignment_id} not found")
        if outcome == "resolved":
            raise AlreadyResolved(f"assignment {assignment_id} is no longer open")
        if outcome == "not_candidate":
            raise InvalidInput(f"courier {courier_id} was not offered assignment {assignment_id}")
        if outcome == "busy":
            raise CourierBusy(f"courier {courier_id} already holds an accepted assignment")
        return await self.get(assignment_id)

    async def complete(self, order_id: str, shop_order_id: str, courier_id: str) -> Optional[Assignment]:
        assignment_id = await self.connector.get_client().eval(
            COMPLETE_SCRIPT, 1,
            self._active_key(courier_id),
            self.prefix, order_id, shop_order_id,
        )
        if not assignment_id:
            return None
        return await self.get(assignment_id)

    async def get(self, assignment_id: str) -> Optional[Assignment]:
        fields = await self.connector.get_client().hgetall(self._assignment_key(assignment_id))
        if not fields:
            return None
        return self._decode(assignment_id, fields)

    async def find_for_line(self, order_id: str, shop_order_id: str) -> Optional[Assignment]:
        assignment_id = await self.connector.get_client().get(self._line_key(order_id, shop_order_id))
        if not assignment_id:
            return None
        return await self.get(assignment_id)

    async def find_active_for_courier(self, courier_id: str) -> List[Assignment]:
        client = self.connector.get_client()
        offers_key = f"{self.prefix}:offers:{courier_id}"
        offers, stale = [], []
        for assignment_id in sorted(await client.smembers(offers_key)):
            assignment = await self.get(assignment_id)
            if assignment is None or assignment.state != AssignmentState.BROADCAST:
                stale.append(assignment_id)
                continue
            current = await client.get(self._line_key(assignment.order_id, assignment.shop_order_id))
            if current == assignment_id:
                offers.append(assignment)
            else:
                stale.append(assignment_id)
        if stale:
            await client.srem(offers_key, *stale)
        offers.sort(key=lambda a: a.created_at)
        return offers

    async def find_accepted_for_courier(self, courier_id: str) -> Optional[Assignment]:
        assignment_id = await self.connector.get_client().get(self._active_key(courier_id))
        if not assignment_id:
            return None
        return await self.get(assignment_id)

    async def busy_couriers(self, courier_ids: Iterable[str]) -> Set[str]:
        ids = list(courier_ids)
        if not ids:
            return set()
        values = await self.connector.get_client().mget([self._active_key(cid) for cid in ids])
        return {cid for cid, value in zip(ids, values) if value}
