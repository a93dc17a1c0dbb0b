import pytest

from msglog_infrastructure.config import MessageLoggerConfig
from msglog_infrastructure.declarations import (
    EVENT_TARGET,
    INVOCATION_POLICY,
    LOG_GROUP,
    TASK_DEFINITION,
    VPC,
    association_name,
    build_declarations,
    subnet_name,
)
from msglog_infrastructure.engine.errors import CycleError, DriftError, ProviderError
from msglog_infrastructure.engine.executor import OperationStatus
from msglog_infrastructure.engine.models import Ref, ResourceDeclaration, ResourceType
from msglog_infrastructure.engine.planner import Action, Planner
from msglog_infrastructure.engine.state import StateSnapshot


def apply_config(config, planner, provider, state_store, executor):
    plan = planner.plan(build_declarations(config), state_store.load(), provider)
    report = executor.apply(plan)
    assert report.succeeded
    return plan


@pytest.fixture
def planner():
    return Planner()


@pytest.fixture
def applied(message_logger_config, planner, provider, state_store, executor):
    apply_config(message_logger_config, planner, provider, state_store, executor)
    return message_logger_config


def operations_for(plan, name):
    return [op for op in plan.operations if op.name == name]


def test_first_plan_creates_everything(declarations, planner):
    plan = planner.plan(declarations, StateSnapshot())

    assert {op.action for op in plan.operations} == {Action.create}
    assert {op.name for op in plan.operations} == {d.name for d in declarations}
    assert plan.summary() == {
        "add": len(declarations),
        "change": 0,
        "replace": 0,
        "destroy": 0,
    }


def test_replanning_unchanged_declarations_is_empty(
    applied, declarations, planner, provider, state_store
):
    plan = planner.plan(declarations, state_store.load(), provider)

    assert plan.is_empty


def test_mutable_change_is_an_update(
    applied, tags, planner, provider, state_store, executor
):
    changed = MessageLoggerConfig(tags=tags, log_retention_days=30)

    plan = planner.plan(build_declarations(changed), state_store.load(), provider)

    assert [(op.action, op.name) for op in plan.operations] == [
        (Action.update, LOG_GROUP)
    ]
    [change] = plan.operations[0].changes
    assert change.attribute == "retention_in_days"
    assert (change.before, change.after) == (14, 30)
    assert not change.forces_replacement

    assert executor.apply(plan).succeeded
    log_group_id = state_store.load().resources[LOG_GROUP].remote_id
    assert provider.read(ResourceType.log_group, log_group_id)["retention_in_days"] == 30


def test_vpc_cidr_change_replaces_dependents_in_order(
    applied, tags, planner, provider, state_store, executor
):
    changed = MessageLoggerConfig(
        tags=tags,
        vpc_cidr="10.1.0.0/16",
        public_subnets=["10.1.1.0/24@eu-north-1a", "10.1.2.0/24@eu-north-1b"],
    )
    old_subnet_id = state_store.load().resources[subnet_name(0)].remote_id

    plan = planner.plan(build_declarations(changed), state_store.load(), provider)

    subnet_ops = operations_for(plan, subnet_name(0))
    assert [op.action for op in subnet_ops] == [Action.delete, Action.create]
    assert all(op.replacement for op in subnet_ops)
    assert not [op for op in plan.operations if op.action == Action.update]

    position = {(op.action, op.name): i for i, op in enumerate(plan.operations)}
    # Teardown runs dependents first, rebuild runs dependencies first
    assert (
        position[(Action.delete, EVENT_TARGET)]
        < position[(Action.delete, association_name(0))]
        < position[(Action.delete, subnet_name(0))]
        < position[(Action.delete, VPC)]
        < position[(Action.create, VPC)]
        < position[(Action.create, subnet_name(0))]
        < position[(Action.create, association_name(0))]
        < position[(Action.create, EVENT_TARGET)]
    )
    assert position[(Action.delete, VPC)] == max(
        index
        for (action, _), index in position.items()
        if action == Action.delete
    )
    assert TASK_DEFINITION not in {op.name for op in plan.operations}

    assert executor.apply(plan).succeeded
    new_subnet = state_store.load().resources[subnet_name(0)]
    assert new_subnet.remote_id != old_subnet_id
    assert provider.read(ResourceType.subnet, old_subnet_id) is None
    assert new_subnet.observed["cidr_block"] == "10.1.1.0/24"
    assert planner.plan(
        build_declarations(changed), state_store.load(), provider
    ).is_empty


def test_task_definition_change_cascades_to_invocation_policy(
    applied, tags, planner, provider, state_store
):
    changed = MessageLoggerConfig(tags=tags, image_tag="v2")

    plan = planner.plan(build_declarations(changed), state_store.load(), provider)

    replaced = {op.name for op in plan.operations if op.replacement}
    assert replaced == {TASK_DEFINITION, INVOCATION_POLICY, EVENT_TARGET}
    assert plan.summary()["replace"] == 3
    [create] = [
        op
        for op in operations_for(plan, TASK_DEFINITION)
        if op.action == Action.create
    ]
    assert create.reason == "container_definitions cannot be updated in place"
    assert TASK_DEFINITION in create.requires


def test_removed_declaration_is_deleted(
    applied, declarations, planner, provider, state_store
):
    remaining = [d for d in declarations if d.name != EVENT_TARGET]

    plan = planner.plan(remaining, state_store.load(), provider)

    [operation] = plan.operations
    assert operation.action == Action.delete
    assert operation.name == EVENT_TARGET
    assert not operation.replacement
    assert operation.reason == "no longer declared"
    assert plan.summary()["destroy"] == 1


def test_dropping_a_subnet_updates_users_before_deleting_it(
    applied, tags, planner, provider, state_store, executor
):
    changed = MessageLoggerConfig(tags=tags, public_subnets=["10.0.1.0/24@eu-north-1a"])
    old_subnet_id = state_store.load().resources[subnet_name(1)].remote_id

    plan = planner.plan(build_declarations(changed), state_store.load(), provider)

    assert [(op.action, op.name) for op in plan.operations] == [
        (Action.update, EVENT_TARGET),
        (Action.delete, association_name(1)),
        (Action.delete, subnet_name(1)),
    ]
    [subnet_delete] = operations_for(plan, subnet_name(1))
    assert subnet_delete.requires == [EVENT_TARGET, association_name(1)]

    report = executor.apply(plan)

    assert report.succeeded
    assert provider.read(ResourceType.subnet, old_subnet_id) is None
    assert subnet_name(1) not in state_store.load().resources
    assert planner.plan(
        build_declarations(changed), state_store.load(), provider
    ).is_empty


def test_failed_update_keeps_the_subnet_it_still_uses(
    applied, tags, planner, provider, state_store, executor
):
    changed = MessageLoggerConfig(tags=tags, public_subnets=["10.0.1.0/24@eu-north-1a"])
    provider.inject_fault(
        EVENT_TARGET, ProviderError("InternalException"), operation="update"
    )

    plan = planner.plan(build_declarations(changed), state_store.load(), provider)
    report = executor.apply(plan)

    statuses = {result.name: result.status for result in report.results}
    assert statuses == {
        EVENT_TARGET: OperationStatus.failed,
        association_name(1): OperationStatus.succeeded,
        subnet_name(1): OperationStatus.skipped,
    }
    assert subnet_name(1) in state_store.load().resources


def test_type_change_is_a_replacement(planner, state_store, provider, executor):
    first = [
        ResourceDeclaration(
            type=ResourceType.log_group,
            name="logs",
            attributes={"name": "/ecs/logs", "retention_in_days": 14},
        )
    ]
    assert executor.apply(planner.plan(first, state_store.load())).succeeded
    second = [
        ResourceDeclaration(
            type=ResourceType.ecr_repository, name="logs", attributes={"name": "logs"}
        )
    ]

    plan = planner.plan(second, state_store.load(), provider)

    assert [(op.action, op.type) for op in plan.operations] == [
        (Action.delete, ResourceType.log_group),
        (Action.create, ResourceType.ecr_repository),
    ]
    assert "type changed" in plan.operations[0].reason


def test_drift_is_reported_and_not_overwritten(
    applied, declarations, planner, provider, state_store
):
    vpc_id = state_store.load().resources[VPC].remote_id
    provider.modify_out_of_band(vpc_id, enable_dns_hostnames=False)

    with pytest.raises(DriftError) as excinfo:
        planner.plan(declarations, state_store.load(), provider)

    [drift] = excinfo.value.drifts
    assert drift.name == VPC
    assert not drift.missing
    assert drift.changes[0].attribute == "enable_dns_hostnames"
    assert provider.read(ResourceType.vpc, vpc_id)["enable_dns_hostnames"] is False


def test_deleted_resource_is_reported_as_drift(
    applied, declarations, planner, provider, state_store
):
    provider.delete_out_of_band(state_store.load().resources[LOG_GROUP].remote_id)

    with pytest.raises(DriftError, match=LOG_GROUP) as excinfo:
        planner.plan(declarations, state_store.load(), provider)

    assert excinfo.value.drifts[0].missing


def test_graph_errors_abort_before_planning(planner):
    looped = [
        ResourceDeclaration(
            type=ResourceType.internet_gateway,
            name="a",
            attributes={"vpc_id": Ref(target="b")},
        ),
        ResourceDeclaration(
            type=ResourceType.internet_gateway,
            name="b",
            attributes={"vpc_id": Ref(target="a")},
        ),
    ]
    with pytest.raises(CycleError):
        planner.plan(looped, StateSnapshot())
