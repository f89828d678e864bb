import datetime

from sqlalchemy import func, select

from conftest import T0, make_rule
from serra_automation.models.execution_log import ExecutionStatus, RuleExecutionLog, SkipReason, TriggerSource
from serra_automation.services.execution_log import append_entry, list_entries, prune_execution_logs


def _add(db, rule_id, executed_at, status=ExecutionStatus.SKIPPED):
    append_entry(
        db,
        rule_id=rule_id,
        status=status,
        executed_at=executed_at,
        trigger_source=TriggerSource.READING,
        sensor_id="temp-1",
        sensor_value=20.0,
        skip_reason=SkipReason.CONDITIONS_NOT_MET if status == ExecutionStatus.SKIPPED else None,
    )


def test_list_entries_filters_by_window_newest_first(db):
    rule = make_rule(db, "r", groups=[[("temp-1", "gt", 30)]])
    for minutes in range(5):
        _add(db, rule.id, T0 + datetime.timedelta(minutes=minutes))
    db.commit()

    rows, total = list_entries(
        db,
        rule.id,
        since=T0 + datetime.timedelta(minutes=1),
        until=T0 + datetime.timedelta(minutes=3),
        offset=0,
        limit=2,
    )

    assert total == 3
    assert len(rows) == 2
    assert rows[0].executed_at > rows[1].executed_at


def test_prune_keeps_newest_rows_per_rule_and_drops_old_rows(db):
    busy = make_rule(db, "busy", groups=[[("temp-1", "gt", 30)]])
    quiet = make_rule(db, "quiet", groups=[[("temp-1", "gt", 30)]], actions=[("pump_1", "on")])
    for minutes in range(5):
        _add(db, busy.id, T0 - datetime.timedelta(minutes=minutes))
    _add(db, quiet.id, T0)
    _add(db, quiet.id, T0 - datetime.timedelta(days=91))
    db.commit()

    deleted = prune_execution_logs(db, keep_per_rule=3, max_age_days=90, now=T0)

    assert deleted == 3
    counts = dict(
        db.execute(select(RuleExecutionLog.rule_id, func.count()).group_by(RuleExecutionLog.rule_id)).all()
    )
    assert counts == {busy.id: 3, quiet.id: 1}
    newest = db.scalars(
        select(RuleExecutionLog.executed_at).where(RuleExecutionLog.rule_id == busy.id)
    ).all()
    assert min(newest).replace(tzinfo=None) == (T0 - datetime.timedelta(minutes=2)).replace(tzinfo=None)
