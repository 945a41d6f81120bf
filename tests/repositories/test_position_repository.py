"""
Position Repository Tests

MongoDB repository with the driver mocked: filters, conditional writes,
error translation and transaction sessions.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from bson import ObjectId
from pymongo.errors import PyMongoError

from app.domain.models.modification import ModifiableField, OwnerScope, PositionModification
from app.domain.models.position import CloseReason, PositionStatus
from app.repositories.base import to_document
from app.repositories.position_repository import PositionRepository, scope_filter, user_filter
from app.shared.exceptions import DatabaseError, UserNotFoundError
from tests.fakes import make_position


COLLECTIONS = ("positions", "position_modifications", "users", "mentor_assignments")


def make_db():
    collections = {name: MagicMock(name=name) for name in COLLECTIONS}
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: collections[name]
    return db, collections


@pytest.fixture
def db_and_collections():
    return make_db()


@pytest.fixture
def repo(db_and_collections):
    db, _ = db_and_collections
    return PositionRepository(db, use_transactions=False)


@pytest.fixture
def collections(db_and_collections):
    return db_and_collections[1]


# ==================== FILTER TESTS ====================

def test_user_filter_matches_object_id_and_string():
    oid = str(ObjectId())
    assert user_filter(oid) == {"_id": {"$in": [ObjectId(oid), oid]}}
    assert user_filter("user-1") == {"_id": "user-1"}


def test_scope_filter():
    assert scope_filter(OwnerScope.everyone()) == {}
    assert scope_filter(OwnerScope.only(["b", "a"])) == {"owner_id": {"$in": ["a", "b"]}}


def test_to_document_converts_domain_values():
    doc = to_document(make_position(stop_loss=Decimal("42000")))

    assert isinstance(doc["_id"], str)
    assert doc["direction"] == "long"
    assert doc["stop_loss"] == 42000.0
    assert doc["duration"] == {"value": 30, "unit": "minute"}


# ==================== READ TESTS ====================

@pytest.mark.asyncio
async def test_list_positions_filters_by_scope_and_status(repo):
    stored = make_position()
    with patch.object(repo, "find", AsyncMock(return_value=[to_document(stored)])) as find:
        positions = await repo.list_positions(OwnerScope.only(["user-1"]), [PositionStatus.OPEN])

    find.assert_awaited_once_with(
        {"owner_id": {"$in": ["user-1"]}, "status": {"$in": ["open"]}},
        sort=[("open_time", -1)],
    )
    assert [p.id for p in positions] == [stored.id]
    assert positions[0].open_price == Decimal("43250")


@pytest.mark.asyncio
async def test_list_positions_translates_driver_errors(repo):
    with patch.object(repo, "find", AsyncMock(side_effect=PyMongoError("down"))):
        with pytest.raises(DatabaseError):
            await repo.list_positions(OwnerScope.everyone())


@pytest.mark.asyncio
async def test_get_position_missing(repo, collections):
    collections["positions"].find_one = AsyncMock(return_value=None)

    assert await repo.get_position("nope", OwnerScope.everyone()) is None


@pytest.mark.asyncio
async def test_get_balance(repo, collections):
    collections["users"].find_one = AsyncMock(return_value={"_id": "user-1", "balance": 1234.5})

    assert await repo.get_balance("user-1") == Decimal("1234.5")


@pytest.mark.asyncio
async def test_get_balance_unknown_user(repo, collections):
    collections["users"].find_one = AsyncMock(return_value=None)

    with pytest.raises(UserNotFoundError):
        await repo.get_balance("ghost")


@pytest.mark.asyncio
async def test_assigned_client_ids_are_strings(repo, collections):
    oid = ObjectId()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[{"user_id": oid}, {"user_id": "user-1"}])
    collections["mentor_assignments"].find = MagicMock(return_value=cursor)

    assert await repo.get_assigned_client_ids("mentor-1") == [str(oid), "user-1"]


# ==================== OPEN TESTS ====================

@pytest.mark.asyncio
async def test_open_debits_and_inserts(repo, collections):
    position = make_position()
    collections["users"].update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collections["positions"].insert_one = AsyncMock(return_value=MagicMock(inserted_id=position.id))

    result = await repo.open_position(position)

    assert result.success
    assert result.data.id == position.id
    filter, update = collections["users"].update_one.call_args.args
    assert filter == {"_id": "user-1", "balance": {"$gte": 1000.0}}
    assert update == {"$inc": {"balance": -1000.0}}
    inserted = collections["positions"].insert_one.call_args.args[0]
    assert inserted["_id"] == position.id


@pytest.mark.asyncio
async def test_open_without_funds_inserts_nothing(repo, collections):
    collections["users"].update_one = AsyncMock(return_value=MagicMock(matched_count=0))
    collections["positions"].insert_one = AsyncMock()

    result = await repo.open_position(make_position())

    assert result.code == "INSUFFICIENT_FUNDS"
    collections["positions"].insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_open_driver_error_is_retryable(repo, collections):
    collections["users"].update_one = AsyncMock(side_effect=PyMongoError("down"))

    result = await repo.open_position(make_position())

    assert result.code == "DATABASE_ERROR"
    assert result.retryable


# ==================== CLOSE TESTS ====================

@pytest.mark.asyncio
async def test_close_credits_amount_plus_profit(repo, collections):
    collections["positions"].find_one_and_update = AsyncMock(
        return_value={"_id": "p1", "owner_id": "user-1", "status": "closed"}
    )
    collections["users"].find_one_and_update = AsyncMock(
        return_value={"_id": "user-1", "balance": 10017.5}
    )

    result = await repo.close_position(
        "p1",
        close_price=Decimal("44000"),
        profit=Decimal("17.5"),
        amount=Decimal("1000"),
        reason=CloseReason.TAKE_PROFIT,
    )

    assert result.success
    assert result.data == {"new_balance": Decimal("10017.5")}
    filter, update = collections["positions"].find_one_and_update.call_args.args
    assert filter == {"_id": "p1", "status": {"$in": ["open", "expired"]}}
    assert update["$set"]["close_reason"] == "take_profit"
    assert update["$set"]["status"] == "closed"
    _, credit = collections["users"].find_one_and_update.call_args.args
    assert credit == {"$inc": {"balance": 1017.5}}


@pytest.mark.asyncio
async def test_close_of_terminal_position_is_conflict(repo, collections):
    collections["positions"].find_one_and_update = AsyncMock(return_value=None)
    collections["positions"].find_one = AsyncMock(return_value={"_id": "p1", "status": "closed"})
    collections["users"].find_one_and_update = AsyncMock()

    result = await repo.close_position("p1", Decimal("1"), Decimal("0"), Decimal("10"))

    assert result.code == "POSITION_CONFLICT"
    assert result.status_code == 409
    collections["users"].find_one_and_update.assert_not_called()


@pytest.mark.asyncio
async def test_close_of_missing_position_is_not_found(repo, collections):
    collections["positions"].find_one_and_update = AsyncMock(return_value=None)
    collections["positions"].find_one = AsyncMock(return_value=None)

    result = await repo.close_position("p1", Decimal("1"), Decimal("0"), Decimal("10"))

    assert result.code == "POSITION_NOT_FOUND"


# ==================== MODIFY TESTS ====================

@pytest.mark.asyncio
async def test_modify_writes_changes_and_records(repo, collections):
    position = make_position(leverage=50)
    record = PositionModification(
        position_id=position.id,
        owner_id="user-1",
        field=ModifiableField.LEVERAGE,
        old_value=100,
        new_value=50,
        reason="Risk review",
        actor_id="admin-1",
    )
    collections["positions"].update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collections["positions"].find_one = AsyncMock(return_value=to_document(position))
    collections["position_modifications"].insert_many = AsyncMock()

    result = await repo.modify_position(
        position.id,
        {"leverage": 50, "margin_required": Decimal("0.865")},
        [record],
    )

    assert result.success
    assert result.data.leverage == 50
    _, update = collections["positions"].update_one.call_args.args
    assert update == {"$set": {"leverage": 50, "margin_required": 0.865}}
    written = collections["position_modifications"].insert_many.call_args.args[0]
    assert written[0]["field"] == "leverage"
    assert written[0]["reason"] == "Risk review"


@pytest.mark.asyncio
async def test_modify_of_closed_position_is_conflict(repo, collections):
    collections["positions"].update_one = AsyncMock(return_value=MagicMock(matched_count=0))
    collections["positions"].find_one = AsyncMock(return_value={"_id": "p1", "status": "closed"})
    collections["position_modifications"].insert_many = AsyncMock()

    result = await repo.modify_position("p1", {"leverage": 50}, [])

    assert result.code == "POSITION_CONFLICT"
    collections["position_modifications"].insert_many.assert_not_called()


# ==================== TRANSACTION TESTS ====================

@pytest.mark.asyncio
async def test_writes_run_inside_a_session_when_enabled(db_and_collections):
    db, collections = db_and_collections
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.start_transaction = MagicMock(return_value=transaction)
    db.client.start_session = AsyncMock(return_value=session)

    collections["users"].update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collections["positions"].insert_one = AsyncMock(return_value=MagicMock(inserted_id="x"))

    repo = PositionRepository(db, use_transactions=True)
    result = await repo.open_position(make_position())

    assert result.success
    assert collections["users"].update_one.call_args.kwargs["session"] is session
    assert collections["positions"].insert_one.call_args.kwargs["session"] is session
    transaction.__aexit__.assert_awaited()
