import pytest

from core.errors import WorkflowConfigError
from core.store import JsonStore
from core.workflows.catalog import (
    BUILT_IN_WORKFLOWS,
    MAX_CUSTOM_STEPS,
    WorkflowCatalog,
    parse_steps,
    resolve_template,
    tokenize,
)


def test_builtin_templates_present():
    assert set(BUILT_IN_WORKFLOWS) == {
        "hotfix",
        "release",
        "quality-check",
        "morning-routine",
        "new-feature",
    }
    hotfix = BUILT_IN_WORKFLOWS["hotfix"]
    assert hotfix.args == ("repo", "issue")
    assert [s.requires_confirm for s in hotfix.steps] == [False, False, True]
    assert hotfix.usage() == "workflow run hotfix <repo> <issue>"


def test_tokenize_keeps_quoted_runs():
    assert tokenize('JUDO login "src/auth.ts" \'add oauth flow\'') == [
        "JUDO",
        "login",
        "src/auth.ts",
        "add oauth flow",
    ]
    assert tokenize("") == []


def test_resolve_template_leaves_unknown_and_empty_names():
    assert resolve_template("deploy {repo} {env}", {"repo": "JUDO", "env": ""}) == "deploy JUDO {env}"
    assert resolve_template("no placeholders", {"repo": "x"}) == "no placeholders"


def test_parse_steps_quoted_and_pipe_fallback():
    assert parse_steps('"run tests JUDO" "deploy JUDO"') == ["run tests JUDO", "deploy JUDO"]
    assert parse_steps("run tests | deploy") == ["run tests", "deploy"]
    assert parse_steps("no quotes here") == []


def test_create_custom_workflow():
    catalog = WorkflowCatalog()
    wf = catalog.create("MyFlow", '"run tests {repo}" "deploy {repo} {env}"', created_by="chat-1")

    assert wf.key == "myflow"
    assert wf.args == ("repo", "env")
    assert [s.name for s in wf.steps] == ["Step 1", "Step 2"]
    assert wf.description == "S1 -> S2"
    assert wf.created_by == "chat-1"
    assert catalog.get("MYFLOW") is wf
    assert [w.key for w in catalog.list_custom()] == ["myflow"]


@pytest.mark.parametrize(
    "name, steps",
    [
        ("", '"a"'),
        ("hotfix", '"a"'),
        ("empty", "no quoted steps"),
        ("huge", " ".join(f'"s{i}"' for i in range(MAX_CUSTOM_STEPS + 1))),
    ],
)
def test_create_rejects_bad_definitions(name, steps):
    catalog = WorkflowCatalog()
    with pytest.raises(WorkflowConfigError):
        catalog.create(name, steps)
    assert catalog.list_custom() == []


def test_delete_custom_and_refuse_builtin():
    catalog = WorkflowCatalog()
    catalog.create("temp", '"a"')
    assert catalog.delete("temp") is True
    assert catalog.delete("temp") is False
    with pytest.raises(WorkflowConfigError):
        catalog.delete("release")


def test_custom_workflows_persist_through_store(tmp_path):
    store = JsonStore(tmp_path)
    catalog = WorkflowCatalog(store=store)
    catalog.create("nightly", '"run tests {repo}" "stats {repo}"')

    reloaded = WorkflowCatalog(store=store)
    assert reloaded.load() == 1
    wf = reloaded.get("nightly")
    assert wf.args == ("repo",)
    assert [s.command for s in wf.steps] == ["run tests {repo}", "stats {repo}"]


def test_stored_workflow_cannot_shadow_builtin(tmp_path):
    store = JsonStore(tmp_path)
    store.save(
        "workflows",
        {"hotfix": {"key": "hotfix", "steps": [{"name": "Step 1", "command": "rm -rf"}]}},
    )
    catalog = WorkflowCatalog(store=store)
    assert catalog.load() == 0
    assert catalog.get("hotfix") is BUILT_IN_WORKFLOWS["hotfix"]
