from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from timeline.directory import StaffDirectory, StaffGroup, StaffMember
from timeline.engine import SKIPPED, Active, CalendarTimeline, WeekRecord
from timeline.errors import InvalidImport, PlanNotFound
from timeline.plan import Plan
from timeline.rules import RuleAssignment, RuleCatalog, ShiftPeriod, WeeklyRule


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
PLANNER_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'planner.db').as_posix()}"
STATUS_ACTIVE = "Active"
STATUS_SKIPPED = "Skipped"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for plan, timeline and audit tables living in planner.db."""

    pass


class PlanRow(Base):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    group_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    member_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rule_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    groups: Mapped[List["StaffGroupRow"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", order_by="StaffGroupRow.sort_order"
    )
    members: Mapped[List["StaffMemberRow"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", order_by="StaffMemberRow.sort_order"
    )
    rules: Mapped[List["WeeklyRuleRow"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", order_by="WeeklyRuleRow.sort_order"
    )
    assignments: Mapped[List["RuleAssignmentRow"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", order_by="RuleAssignmentRow.position"
    )
    calendar: Mapped[Optional["ShiftCalendarRow"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", uselist=False
    )


class StaffGroupRow(Base):
    __tablename__ = "staff_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    ref: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plan: Mapped[PlanRow] = relationship(back_populates="groups")

    __table_args__ = (UniqueConstraint("plan_id", "ref", name="uq_staff_group_plan_ref"),)


class StaffMemberRow(Base):
    __tablename__ = "staff_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    group_ref: Mapped[int] = mapped_column(Integer, nullable=False)
    ref: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plan: Mapped[PlanRow] = relationship(back_populates="members")

    __table_args__ = (UniqueConstraint("plan_id", "ref", name="uq_staff_member_plan_ref"),)


class WeeklyRuleRow(Base):
    __tablename__ = "weekly_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    ref: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plan: Mapped[PlanRow] = relationship(back_populates="rules")

    __table_args__ = (UniqueConstraint("plan_id", "ref", name="uq_weekly_rule_plan_ref"),)


class RuleAssignmentRow(Base):
    __tablename__ = "rule_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    rule_ref: Mapped[int] = mapped_column(Integer, nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Monday
    period: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = morning, 1 = afternoon
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    group_ref: Mapped[int] = mapped_column(Integer, nullable=False)
    member_index: Mapped[int] = mapped_column(Integer, nullable=False)

    plan: Mapped[PlanRow] = relationship(back_populates="assignments")


class ShiftCalendarRow(Base):
    __tablename__ = "shift_calendars"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, unique=True)
    base_abs_week: Mapped[int] = mapped_column(Integer, nullable=False)
    initial_rotation_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plan: Mapped[PlanRow] = relationship(back_populates="calendar")
    statuses: Mapped[List["WeekStatusRow"]] = relationship(
        back_populates="calendar", cascade="all, delete-orphan", order_by="WeekStatusRow.week_offset"
    )


class WeekStatusRow(Base):
    __tablename__ = "weekly_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    calendar_id: Mapped[int] = mapped_column(ForeignKey("shift_calendars.id", ondelete="CASCADE"), nullable=False)
    week_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    status_type: Mapped[str] = mapped_column(String(12), nullable=False)
    rule_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rotation_offset: Mapped[int | None] = mapped_column(Integer, nullable=True)

    calendar: Mapped[ShiftCalendarRow] = relationship(back_populates="statuses")

    __table_args__ = (UniqueConstraint("calendar_id", "week_offset", name="uq_weekly_status_offset"),)

    def to_record(self) -> WeekRecord:
        if self.status_type == STATUS_SKIPPED:
            return SKIPPED
        if self.status_type == STATUS_ACTIVE:
            if self.rule_ref is None or self.rotation_offset is None:
                raise InvalidImport(f"Active week at offset {self.week_offset} is missing its rule or rotation.")
            return Active(rule_id=self.rule_ref, rotation_offset=self.rotation_offset)
        raise InvalidImport(f"Unknown status type: {self.status_type}")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Plan")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def payload_dict(self) -> Dict:
        try:
            value = json.loads(self.payloadJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


planner_engine = create_engine(
    PLANNER_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=planner_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(planner_engine)


def _record_from_status(record: WeekRecord) -> Dict[str, Any]:
    if isinstance(record, Active):
        return {"status_type": STATUS_ACTIVE, "rule_ref": record.rule_id, "rotation_offset": record.rotation_offset}
    return {"status_type": STATUS_SKIPPED, "rule_ref": None, "rotation_offset": None}


def _get_plan_row(session, plan_id: int) -> PlanRow:
    stmt = (
        select(PlanRow)
        .options(
            selectinload(PlanRow.groups),
            selectinload(PlanRow.members),
            selectinload(PlanRow.rules),
            selectinload(PlanRow.assignments),
            selectinload(PlanRow.calendar).selectinload(ShiftCalendarRow.statuses),
        )
        .where(PlanRow.id == plan_id)
    )
    row = session.scalars(stmt).first()
    if row is None:
        raise PlanNotFound(f"Plan {plan_id} was not found.")
    return row


def create_plan(session, name: str) -> PlanRow:
    row = PlanRow(name=name)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def list_plans(session) -> List[Dict[str, Any]]:
    stmt = select(PlanRow).order_by(PlanRow.id)
    return [{"id": row.id, "name": row.name} for row in session.scalars(stmt)]


def delete_plan(session, plan_id: int) -> None:
    row = session.get(PlanRow, plan_id)
    if row is None:
        raise PlanNotFound(f"Plan {plan_id} was not found.")
    session.delete(row)
    session.commit()


def load_plan(session, plan_id: int) -> Plan:
    row = _get_plan_row(session, plan_id)
    members_by_group: Dict[int, List[StaffMember]] = {}
    for member in row.members:
        members_by_group.setdefault(member.group_ref, []).append(
            StaffMember(id=member.ref, display_name=member.name, sort_order=member.sort_order)
        )
    directory = StaffDirectory(
        [
            StaffGroup(
                id=group.ref,
                name=group.name,
                sort_order=group.sort_order,
                members=members_by_group.get(group.ref, []),
            )
            for group in row.groups
        ],
        next_group_id=row.group_seq,
        next_member_id=row.member_seq,
    )

    rules = {rule.ref: WeeklyRule(id=rule.ref, name=rule.name, sort_order=rule.sort_order) for rule in row.rules}
    for item in row.assignments:
        rule = rules.get(item.rule_ref)
        if rule is None:
            continue
        period = ShiftPeriod(item.period)
        rule.slots.setdefault((item.weekday, period), []).append(
            RuleAssignment(item.weekday, period, item.group_ref, item.member_index)
        )
    catalog = RuleCatalog(rules.values(), next_rule_id=row.rule_seq)

    timeline = None
    if row.calendar is not None:
        # Deleted rules keep ids below the sequence; their weeks derive as empty.
        timeline = CalendarTimeline.restore(
            row.calendar.base_abs_week,
            row.calendar.initial_rotation_offset,
            [(status.week_offset, status.to_record()) for status in row.calendar.statuses],
            known_rule_ids=range(1, catalog.next_rule_id),
        )
    return Plan(id=row.id, name=row.name, directory=directory, catalog=catalog, timeline=timeline)


def save_plan(session, plan: Plan) -> PlanRow:
    """Write the plan aggregate back: staff and rules are replaced, the timeline is synced."""
    row = _get_plan_row(session, plan.id)
    row.name = plan.name
    row.group_seq = plan.directory.next_group_id
    row.member_seq = plan.directory.next_member_id
    row.rule_seq = plan.catalog.next_rule_id

    session.execute(delete(StaffMemberRow).where(StaffMemberRow.plan_id == plan.id))
    session.execute(delete(StaffGroupRow).where(StaffGroupRow.plan_id == plan.id))
    session.execute(delete(RuleAssignmentRow).where(RuleAssignmentRow.plan_id == plan.id))
    session.execute(delete(WeeklyRuleRow).where(WeeklyRuleRow.plan_id == plan.id))
    session.expire(row, ["groups", "members", "rules", "assignments"])
    for group in plan.directory.groups:
        session.add(StaffGroupRow(plan=row, ref=group.id, name=group.name, sort_order=group.sort_order))
        for member in group.members:
            session.add(
                StaffMemberRow(
                    plan=row,
                    group_ref=group.id,
                    ref=member.id,
                    name=member.display_name,
                    sort_order=member.sort_order,
                )
            )
    for rule in plan.catalog.rules:
        session.add(WeeklyRuleRow(plan=row, ref=rule.id, name=rule.name, sort_order=rule.sort_order))
        for (weekday, period), slot in rule.slots.items():
            for position, assignment in enumerate(slot):
                session.add(
                    RuleAssignmentRow(
                        plan=row,
                        rule_ref=rule.id,
                        weekday=weekday,
                        period=int(period),
                        position=position,
                        group_ref=assignment.group_id,
                        member_index=assignment.member_index,
                    )
                )
    _sync_timeline(session, row, plan.timeline)
    session.commit()
    return row


def _sync_timeline(session, row: PlanRow, timeline: Optional[CalendarTimeline]) -> None:
    if timeline is None:
        if row.calendar is not None:
            session.delete(row.calendar)
        return
    calendar = row.calendar
    if calendar is None:
        calendar = ShiftCalendarRow(
            plan=row,
            base_abs_week=timeline.base_abs_week,
            initial_rotation_offset=timeline.initial_rotation_offset,
        )
        session.add(calendar)
        session.flush()
    elif (calendar.base_abs_week, calendar.initial_rotation_offset) != (
        timeline.base_abs_week,
        timeline.initial_rotation_offset,
    ):
        calendar.base_abs_week = timeline.base_abs_week
        calendar.initial_rotation_offset = timeline.initial_rotation_offset
        session.execute(delete(WeekStatusRow).where(WeekStatusRow.calendar_id == calendar.id))
        session.expire(calendar, ["statuses"])

    stored = list(
        session.scalars(
            select(WeekStatusRow).where(WeekStatusRow.calendar_id == calendar.id).order_by(WeekStatusRow.week_offset)
        )
    )
    records = timeline.records
    # Keep the longest stored prefix that still matches; rewrite from the first difference.
    keep = 0
    for status, record in zip(stored, records):
        if status.week_offset != keep or status.to_record() != record:
            break
        keep += 1
    if keep < len(stored):
        session.execute(
            delete(WeekStatusRow).where(
                WeekStatusRow.calendar_id == calendar.id,
                WeekStatusRow.week_offset >= keep,
            )
        )
        session.expire(calendar, ["statuses"])
    for offset in range(keep, len(records)):
        session.add(WeekStatusRow(calendar=calendar, week_offset=offset, **_record_from_status(records[offset])))


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Plan",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log


def list_audit_log(session, plan_id: Optional[int] = None) -> List[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.id)
    if plan_id is not None:
        stmt = stmt.where(AuditLog.target_type == "Plan", AuditLog.target_id == plan_id)
    return list(session.scalars(stmt))


class SqlPlanStore:
    """Plan store backed by planner.db; one short-lived session per call."""

    def __init__(self, session_factory: Optional[Callable] = None, *, actor: str = "system") -> None:
        self._session_factory = session_factory
        self.actor = actor

    @property
    def session_factory(self) -> Callable:
        return self._session_factory or SessionLocal

    def create(self, name: str) -> Plan:
        with self.session_factory() as session:
            row = create_plan(session, name)
            return Plan(id=row.id, name=row.name)

    def load(self, plan_id: int) -> Plan:
        with self.session_factory() as session:
            return load_plan(session, plan_id)

    def save(self, plan: Plan) -> None:
        with self.session_factory() as session:
            save_plan(session, plan)

    def delete(self, plan_id: int) -> None:
        with self.session_factory() as session:
            delete_plan(session, plan_id)

    def list(self) -> List[Dict[str, Any]]:
        with self.session_factory() as session:
            return list_plans(session)

    def record(self, action: str, plan_id: int, payload: Dict[str, Any]) -> None:
        with self.session_factory() as session:
            record_audit_log(session, user_id=self.actor, action=action, target_id=plan_id, payload=payload)
