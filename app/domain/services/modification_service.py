"""
Position Modification Service

Lets admins and mentors override fields of an open position. Every request
carries a reason; every changed field produces one immutable audit record;
position update and records are written in one store transaction.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from app.domain.models.modification import (
    ModifiableField,
    ModificationOutcome,
    Operator,
    OperatorRole,
    OwnerScope,
    PositionModification,
)
from app.domain.models.position import DurationUnit, Position, PositionStatus
from app.domain.services import margin_calculator as calc
from app.domain.services.lifecycle_manager import DERIVED_ATTRIBUTES, PositionLifecycleManager
from app.repositories.position_store import PositionStore
from app.shared.exceptions import (
    AppException,
    NoChangesDetectedError,
    PermissionDeniedError,
    PositionConflictError,
    PositionNotFoundError,
    ReasonRequiredError,
    ValidationError,
)
from app.shared.models import OperationResult
from app.utils.logger import get_logger

logger = get_logger(__name__)


# ==================== FIELD SPECS ====================

def _positive_decimal(label: str, nullable: bool = False) -> Callable[[Any], Optional[Decimal]]:
    def parse(raw: Any) -> Optional[Decimal]:
        if raw is None and nullable:
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str, Decimal)):
            raise ValueError(f"{label} must be a positive number")
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            raise ValueError(f"{label} must be a positive number")
        if not value.is_finite() or value <= 0:
            raise ValueError(f"{label} must be a positive number")
        return value
    return parse


def _positive_int(label: str) -> Callable[[Any], int]:
    number = _positive_decimal(label)

    def parse(raw: Any) -> int:
        value = number(raw)
        if value != value.to_integral_value():
            raise ValueError(f"{label} must be a whole number")
        return int(value)
    return parse


def _duration_unit(raw: Any) -> DurationUnit:
    if not isinstance(raw, str):
        raise ValueError("Duration unit must be text")
    try:
        return DurationUnit(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(u.value for u in DurationUnit)
        raise ValueError(f"Duration unit must be one of: {allowed}")


def _text(label: str) -> Callable[[Any], str]:
    def parse(raw: Any) -> str:
        if not isinstance(raw, str):
            raise ValueError(f"{label} must be text")
        return raw
    return parse


@dataclass(frozen=True)
class FieldSpec:
    """How one modifiable field is parsed, read, written and compared."""
    field: ModifiableField
    parse: Callable[[Any], Any]
    read: Callable[[Position], Any]
    write: Callable[[Position, Any], None]
    attribute: str

    def differs(self, position: Position, value: Any) -> bool:
        return self.read(position) != value


def _attr_spec(field: ModifiableField, parse: Callable[[Any], Any]) -> FieldSpec:
    name = field.value
    return FieldSpec(
        field=field,
        parse=parse,
        read=lambda p: getattr(p, name),
        write=lambda p, v: setattr(p, name, v),
        attribute=name,
    )


def _duration_writer(key: str) -> Callable[[Position, Any], None]:
    def write(position: Position, value: Any) -> None:
        position.duration = position.duration.model_copy(update={key: value})
    return write


FIELD_SPECS: Dict[ModifiableField, FieldSpec] = {
    spec.field: spec
    for spec in (
        _attr_spec(ModifiableField.CURRENT_PRICE, _positive_decimal("Current price")),
        _attr_spec(ModifiableField.OPEN_PRICE, _positive_decimal("Open price")),
        _attr_spec(ModifiableField.STOP_LOSS, _positive_decimal("Stop loss", nullable=True)),
        _attr_spec(ModifiableField.TAKE_PROFIT, _positive_decimal("Take profit", nullable=True)),
        _attr_spec(ModifiableField.AMOUNT, _positive_decimal("Amount")),
        _attr_spec(ModifiableField.STAKE, _positive_decimal("Stake")),
        _attr_spec(ModifiableField.LEVERAGE, _positive_int("Leverage")),
        _attr_spec(ModifiableField.MARKET_COLOR, _text("Market color")),
        FieldSpec(
            field=ModifiableField.DURATION_VALUE,
            parse=_positive_int("Duration"),
            read=lambda p: p.duration.value,
            write=_duration_writer("value"),
            attribute="duration",
        ),
        FieldSpec(
            field=ModifiableField.DURATION_UNIT,
            parse=_duration_unit,
            read=lambda p: p.duration.unit,
            write=_duration_writer("unit"),
            attribute="duration",
        ),
    )
}

# camelCase names used by the admin panel
FIELD_ALIASES: Dict[str, ModifiableField] = {
    "currentPrice": ModifiableField.CURRENT_PRICE,
    "openPrice": ModifiableField.OPEN_PRICE,
    "stopLoss": ModifiableField.STOP_LOSS,
    "takeProfit": ModifiableField.TAKE_PROFIT,
    "durationValue": ModifiableField.DURATION_VALUE,
    "durationUnit": ModifiableField.DURATION_UNIT,
    "marketColor": ModifiableField.MARKET_COLOR,
}


def resolve_field(name: str) -> Optional[ModifiableField]:
    if name in FIELD_ALIASES:
        return FIELD_ALIASES[name]
    try:
        return ModifiableField(name)
    except ValueError:
        return None


def audit_value(value: Any) -> Any:
    """JSON/BSON friendly form of a field value."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, DurationUnit):
        return value.value
    return value


# ==================== SERVICE ====================

class PositionModificationService:
    """
    Position Modification Service

    Usage:
        service = PositionModificationService(store, manager)
        result = await service.propose(
            operator,
            position_id,
            {"stop_loss": 42000, "take_profit": 46000},
            reason="Client request by phone",
        )
        if result.success:
            records = result.data.modifications
    """

    def __init__(
        self,
        store: PositionStore,
        manager: PositionLifecycleManager,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.manager = manager
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve_scope(self, operator: Operator) -> OwnerScope:
        """Admins see every owner; mentors see their assigned clients."""
        if operator.role == OperatorRole.ADMIN:
            return OwnerScope.everyone()
        if operator.role == OperatorRole.MENTOR:
            client_ids = await self.store.get_assigned_client_ids(operator.id)
            return OwnerScope.only(client_ids)
        raise PermissionDeniedError("Only admins and mentors can manage positions")

    # ==================== PROPOSE ====================

    async def propose(
        self,
        operator: Operator,
        position_id: str,
        new_values: Dict[str, Any],
        reason: Optional[str],
    ) -> OperationResult:
        """
        Validate, diff and apply an operator's modification request.

        ``data`` is always a ModificationOutcome: the written records on
        success, the error messages on failure.
        """
        try:
            return await self._propose(operator, position_id, new_values, reason)
        except AppException as e:
            logger.warning(
                f"Modification of {position_id} by {operator.id} rejected: {e.message}"
            )
            return OperationResult.from_exception(e, data=ModificationOutcome(errors=[e.message]))

    async def _propose(
        self,
        operator: Operator,
        position_id: str,
        new_values: Dict[str, Any],
        reason: Optional[str],
    ) -> OperationResult:
        if reason is None or not reason.strip():
            raise ReasonRequiredError()
        reason = reason.strip()

        if not operator.is_privileged:
            raise PermissionDeniedError("Only admins and mentors can modify positions")

        scope = await self.resolve_scope(operator)
        position = await self.store.get_position(position_id, scope)
        if position is None:
            raise PositionNotFoundError()

        # Prefer the live local copy; the store lags behind ticks
        local = self.manager.get(position_id)
        if local is not None:
            position = local

        if position.status != PositionStatus.OPEN:
            raise PositionConflictError(f"Position is {position.status.value} and cannot be modified")
        if position.is_expired(self._clock()):
            raise PositionConflictError("Expired positions cannot be modified")

        parsed, errors = self._parse(new_values or {})
        if errors:
            raise ValidationError("; ".join(errors))

        self._validate(position, parsed)

        changed = {
            field: value
            for field, value in parsed.items()
            if FIELD_SPECS[field].differs(position, value)
        }
        if not changed:
            raise NoChangesDetectedError()

        updated = position.model_copy(deep=True)
        for field, value in changed.items():
            FIELD_SPECS[field].write(updated, value)

        metrics = calc.compute_lot_metrics(updated, updated.current_price)
        pnl = calc.compute_unrealized_pnl(updated, updated.current_price)
        updated.position_value = metrics.position_value
        updated.margin_required = metrics.margin_required
        updated.profit = pnl.profit
        updated.profit_percentage = pnl.profit_percentage

        timestamp = self._clock()
        updated.updated_at = timestamp

        attributes = {FIELD_SPECS[field].attribute for field in changed}
        attributes.update(DERIVED_ATTRIBUTES)
        attributes.add("updated_at")
        changes = {name: getattr(updated, name) for name in sorted(attributes)}

        records = [
            PositionModification(
                position_id=position.id,
                owner_id=position.owner_id,
                field=field,
                old_value=audit_value(FIELD_SPECS[field].read(position)),
                new_value=audit_value(value),
                reason=reason,
                actor_id=operator.id,
                actor_name=operator.display_name,
                timestamp=timestamp,
            )
            for field, value in changed.items()
        ]

        result = await self.store.modify_position(position.id, changes, records)
        if not result.success:
            logger.warning(f"Store rejected modification of {position.id}: {result.message}")
            return result.model_copy(update={"data": ModificationOutcome(errors=[result.message])})

        stored = result.data if isinstance(result.data, Position) else updated
        self.manager.apply_modification(stored, {FIELD_SPECS[field].attribute for field in changed})

        logger.info(
            f"Position {position.id} modified by {operator.id} ({operator.role.value}): "
            f"{', '.join(f.value for f in changed)}"
        )
        return OperationResult.ok(
            f"{len(records)} field(s) modified",
            data=ModificationOutcome(modifications=records),
        )

    def _parse(self, new_values: Dict[str, Any]):
        parsed: Dict[ModifiableField, Any] = {}
        errors: List[str] = []

        for name, raw in new_values.items():
            field = resolve_field(name)
            if field is None:
                errors.append(f"Field not modifiable: {name}")
                continue
            try:
                parsed[field] = FIELD_SPECS[field].parse(raw)
            except ValueError as e:
                errors.append(str(e))

        return parsed, errors

    def _validate(self, position: Position, parsed: Dict[ModifiableField, Any]) -> None:
        """Cross-field rules: protective levels and leverage bounds."""
        price = parsed.get(ModifiableField.CURRENT_PRICE, position.current_price)
        sign = position.direction.sign

        stop_loss = parsed.get(ModifiableField.STOP_LOSS)
        if stop_loss is not None and (stop_loss - price) * sign >= 0:
            raise ValidationError(
                "Stop loss must be below the current price for long positions "
                "and above it for short positions"
            )

        take_profit = parsed.get(ModifiableField.TAKE_PROFIT)
        if take_profit is not None and (take_profit - price) * sign <= 0:
            raise ValidationError(
                "Take profit must be above the current price for long positions "
                "and below it for short positions"
            )

        leverage = parsed.get(ModifiableField.LEVERAGE)
        if leverage is not None:
            self.manager.leverage_limits.check(position.instrument, leverage)

    # ==================== HISTORY ====================

    async def history(
        self,
        operator: Operator,
        position_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> OperationResult:
        """Audit records visible to the operator, newest first."""
        try:
            scope = await self.resolve_scope(operator)
            records = await self.store.list_modifications(
                scope,
                position_id=position_id,
                limit=limit,
                offset=offset,
            )
        except AppException as e:
            return OperationResult.from_exception(e, data=[])

        return OperationResult.ok(f"{len(records)} modification(s)", data=records)
