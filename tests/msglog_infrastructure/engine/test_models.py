import pytest

from msglog_infrastructure.engine.errors import ResourceReferenceError
from msglog_infrastructure.engine.models import (
    Join,
    Ref,
    ResourceDeclaration,
    ResourceType,
    canonicalize,
    iter_refs,
    resolve,
)

OUTPUTS = {
    "repo": {"repository_url": "123.dkr.ecr.eu-north-1.amazonaws.com/app"},
    "role": {"arn": "arn:aws:iam::123:role/app", "name": "app"},
}


def test_references_are_found_in_nested_values():
    value = {
        "a": [Ref(target="role", attribute="arn"), {"b": Ref(target="repo")}],
        "c": Join(parts=(Ref(target="repo", attribute="repository_url"), ":v1")),
    }

    assert {str(ref) for ref in iter_refs(value)} == {
        "role.arn",
        "repo.id",
        "repo.repository_url",
    }


def test_canonical_form_keeps_references_symbolic():
    value = {"image": Join(parts=(Ref(target="repo", attribute="repository_url"), ":v1"))}

    assert canonicalize(value) == {
        "image": {"$join": [{"$ref": "repo.repository_url"}, ":v1"]}
    }


def test_resolve_substitutes_outputs():
    value = {
        "image": Join(parts=(Ref(target="repo", attribute="repository_url"), ":v1")),
        "roles": (Ref(target="role", attribute="arn"),),
    }

    assert resolve(value, OUTPUTS) == {
        "image": "123.dkr.ecr.eu-north-1.amazonaws.com/app:v1",
        "roles": ["arn:aws:iam::123:role/app"],
    }


def test_resolve_reports_missing_targets_and_outputs():
    with pytest.raises(ResourceReferenceError, match="undeclared resource 'vpc'"):
        resolve(Ref(target="vpc"), OUTPUTS, "subnet")
    with pytest.raises(ResourceReferenceError) as excinfo:
        resolve(Ref(target="role", attribute="id"), OUTPUTS, "policy")
    assert excinfo.value.attribute == "id"


def test_declaration_dependencies_include_explicit_ordering():
    declaration = ResourceDeclaration(
        type=ResourceType.iam_role_policy_attachment,
        name="attachment",
        attributes={"role": Ref(target="role", attribute="name"), "policy_arn": "x"},
        depends_on=["other"],
    )

    assert declaration.dependency_names() == {"role", "other"}


@pytest.mark.parametrize("name", ["Upper", "-leading", "with space", ""])
def test_declaration_names_are_restricted(name):
    with pytest.raises(ValueError):  # noqa: PT011
        ResourceDeclaration(type=ResourceType.vpc, name=name)
