import json

import pytest
import yaml

from codeweave.errors import ConfigurationError
from codeweave.workflow import TemplateTracker


@pytest.fixture
def workspace(config, make_catalog):
    catalog = make_catalog("plan", "build", "fixer")
    root = config.workspace_dir
    (root / "feature.yaml").write_text(
        yaml.safe_dump(
            {"steps": ["plan", {"agentId": "build", "notCompletedFallback": "fixer"}]}
        )
    )
    (root / "bugfix.yaml").write_text(yaml.safe_dump({"name": "bugfix", "steps": ["build"]}))
    return catalog


def test_activate_records_template_and_generates_prompts(config, workspace):
    tracker = TemplateTracker(config)

    template = tracker.activate("feature.yaml", workspace)

    assert template.name == "feature"
    state = json.loads(tracker.tracking_path.read_text())
    assert state["template"] == "feature.yaml"
    assert len(state["sha256"]) == 64
    generated = sorted(p.name for p in config.agents_dir.iterdir())
    assert generated == ["build.md", "fixer.md", "plan.md"]
    assert (config.agents_dir / "plan.md").read_text() == "You are the plan agent.\n"


def test_unchanged_template_keeps_artifacts(config, workspace):
    tracker = TemplateTracker(config)
    tracker.activate("feature.yaml", workspace)
    marker = config.agents_dir / "notes.txt"
    marker.write_text("kept")

    assert not tracker.has_changed(config.workspace_dir / "feature.yaml")
    tracker.activate("feature.yaml", workspace)

    assert marker.exists()


def test_switching_template_regenerates_artifacts(config, workspace):
    tracker = TemplateTracker(config)
    tracker.activate("feature.yaml", workspace)

    tracker.activate("bugfix.yaml", workspace)

    assert tracker.current().template == "bugfix.yaml"
    assert sorted(p.name for p in config.agents_dir.iterdir()) == ["build.md"]


def test_editing_active_template_counts_as_change(config, workspace):
    tracker = TemplateTracker(config)
    tracker.activate("feature.yaml", workspace)
    path = config.workspace_dir / "feature.yaml"

    path.write_text(yaml.safe_dump({"steps": ["plan"]}))

    assert tracker.has_changed(path)
    tracker.activate(path, workspace)
    assert sorted(p.name for p in config.agents_dir.iterdir()) == ["plan.md"]


def test_unreadable_tracking_file_is_ignored(config, workspace):
    tracker = TemplateTracker(config)
    tracker.tracking_path.parent.mkdir(parents=True)
    tracker.tracking_path.write_text("{not json")
    assert tracker.current() is None


def test_missing_template_file(config, workspace):
    with pytest.raises(ConfigurationError):
        TemplateTracker(config).activate("missing.yaml", workspace)
