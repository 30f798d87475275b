"""Tests for revision spec validation and loading."""

import json

import pytest

from cutover.exceptions import RegistrationError
from cutover.revisions import (
    load_revision_spec,
    parse_revision_spec,
    resolve_revision_spec,
    spec_from_image,
)
from tests.utils.test_helpers import make_spec


class TestRevisionSpec:
    def test_revision_id_is_content_addressed(self):
        first = parse_revision_spec(make_spec("1.0.0"))
        second = parse_revision_spec(dict(reversed(list(make_spec("1.0.0").items()))))
        other = parse_revision_spec(make_spec("1.0.1"))

        assert first.revision_id == second.revision_id
        assert first.revision_id != other.revision_id
        assert len(first.revision_id) == 64

    def test_to_revision(self):
        spec = parse_revision_spec(
            make_spec(log_target={"driver": "awslogs", "options": {"awslogs-group": "/web"}})
        )
        revision = spec.to_revision(backend_ref="arn:aws:ecs:task-definition/web:3")

        assert revision.revision_id == spec.revision_id
        assert revision.short_id == spec.revision_id[:12]
        assert revision.port_mappings[0].container_port == 8080
        assert revision.log_target.options == {"awslogs-group": "/web"}
        assert revision.backend_ref == "arn:aws:ecs:task-definition/web:3"
        assert revision.registered_at is not None

    @pytest.mark.parametrize(
        "override",
        [
            {"image": ""},
            {"image": "web :1"},
            {"family": "bad family"},
            {"cpu": 0},
            {"port_mappings": [{"container_port": 70000}]},
            {"unknown": "field"},
        ],
    )
    def test_invalid_spec_raises_registration_error(self, override):
        with pytest.raises(RegistrationError) as exc_info:
            parse_revision_spec(make_spec(**override))
        assert exc_info.value.details["errors"]

    def test_missing_image(self):
        spec = make_spec()
        del spec["image"]
        with pytest.raises(RegistrationError):
            parse_revision_spec(spec)


class TestLoading:
    def test_load_yaml(self, temp_dir):
        path = temp_dir / "web.yaml"
        path.write_text("family: web\nimage: registry.example.com/web:3.1.0\nmemory: 1024\n")

        spec = load_revision_spec(path)

        assert spec.image == "registry.example.com/web:3.1.0"
        assert spec.memory == 1024

    def test_load_json(self, temp_dir):
        path = temp_dir / "web.json"
        path.write_text(json.dumps(make_spec("4.0.0")))
        assert load_revision_spec(path).image.endswith(":4.0.0")

    def test_missing_file(self, temp_dir):
        with pytest.raises(RegistrationError, match="not found"):
            load_revision_spec(temp_dir / "missing.yaml")

    def test_non_mapping(self, temp_dir):
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(RegistrationError, match="mapping"):
            load_revision_spec(path)

    def test_spec_from_image_applies_defaults(self):
        spec = spec_from_image("web:5", "web", cpu=512, memory=1024)
        assert (spec.family, spec.image, spec.cpu, spec.memory) == ("web", "web:5", 512, 1024)

    def test_resolve_image_reference(self):
        spec = resolve_revision_spec("registry.example.com/web:6", "web")
        assert spec.image == "registry.example.com/web:6"
        assert spec.family == "web"

    def test_resolve_spec_file(self, temp_dir):
        path = temp_dir / "spec.yml"
        path.write_text("family: api\nimage: api:1\n")
        assert resolve_revision_spec(str(path), "web").family == "api"
