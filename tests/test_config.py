"""Tests for configuration loading and request validation."""
import base64
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from arbiter.config import DEFAULT_GATEWAYS, Config, JustifierSpec, load_config
from arbiter.errors import ValidationError
from arbiter.query import ArbitrationResult, Attachment, PanelEntry, QueryObject, error_record


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.default = self.tmp / "default.yaml"
        self.user = self.tmp / "user.yaml"
        self.default.write_text(
            "server:\n  host: 127.0.0.1\n  port: 8080\n"
            "justifier: OpenAI:gpt-4o\n"
            "providers:\n  timeout_seconds: 120\n  ollama:\n    base_url: http://localhost:11434\n"
        )

    def tearDown(self):
        self._tmp.cleanup()

    @patch.dict(os.environ, {}, clear=True)
    def test_user_file_is_merged(self):
        self.user.write_text("server:\n  port: 9000\n")
        data = load_config(self.default, self.user)
        self.assertEqual(data["server"], {"host": "127.0.0.1", "port": 9000})

    @patch.dict(os.environ, {
        "ARBITER_PORT": "9100",
        "JUSTIFIER_MODEL": "Anthropic:claude-3-5-sonnet-20241022",
        "OLLAMA_URL": "http://gpu-box:11434",
        "ARBITER_COMMIT_STORE": "MEMORY",
        "ARBITER_COMMIT_MAX_AGE_HOURS": "12",
        "ARBITER_PUBLISHER": "Local",
        "ARBITER_LOG_LEVEL": "debug",
    }, clear=True)
    def test_environment_overrides(self):
        config = Config(load_config(self.default, self.user))
        self.assertEqual(config.server["port"], 9100)
        self.assertEqual(str(config.justifier), "Anthropic:claude-3-5-sonnet-20241022")
        self.assertEqual(config.providers["ollama"]["base_url"], "http://gpu-box:11434")
        self.assertEqual(config.commit_backend, "memory")
        self.assertEqual(config.commit_max_age_seconds, 12 * 3600)
        self.assertEqual(config.publisher, "local")
        self.assertEqual(config.log_level, "DEBUG")

    @patch.dict(os.environ, {"ARBITER_PORT": "not-a-port"}, clear=True)
    def test_bad_numeric_override_is_ignored(self):
        self.assertEqual(load_config(self.default, self.user)["server"]["port"], 8080)


class TestConfigDefaults(unittest.TestCase):
    def test_empty_config(self):
        config = Config({"data_dir": "/srv/arbiter"})
        self.assertEqual(config.provider_timeout_seconds, 120)
        self.assertEqual(config.commit_backend, "json")
        self.assertEqual(config.commit_store_path, Path("/srv/arbiter/commitments.json"))
        self.assertEqual(config.interactions_log_path, Path("/srv/arbiter/logs/interactions.jsonl"))
        self.assertEqual(config.ipfs_gateways, DEFAULT_GATEWAYS)
        self.assertEqual(config.publisher, "pinata")

    def test_interactions_log_can_be_disabled(self):
        self.assertIsNone(Config({"logging": {"interactions": False}}).interactions_log_path)


class TestJustifierSpec(unittest.TestCase):
    def test_model_may_contain_colons(self):
        spec = JustifierSpec.parse("Ollama:llama3:8b")
        self.assertEqual((spec.provider, spec.model), ("Ollama", "llama3:8b"))

    def test_malformed_falls_back_to_default(self):
        for value in (None, "", "gpt-4o", ":gpt-4o", "OpenAI:"):
            self.assertEqual(str(JustifierSpec.parse(value)), "OpenAI:gpt-4o")


class TestQueryValidation(unittest.TestCase):
    def test_from_payload(self):
        query = QueryObject.from_payload({
            "prompt": "Which?",
            "models": [{"provider": "openai", "model": "gpt-4", "weight": 0.7, "count": 2}],
            "iterations": 2,
            "outcomes": ["A", "B", "C"],
        })
        self.assertEqual(query.models, (PanelEntry("openai", "gpt-4", 0.7, 2),))
        self.assertEqual(query.outcome_count, 3)
        self.assertEqual(query.iterations, 2)

    def test_outcome_defaults(self):
        query = QueryObject.build("p", [PanelEntry("openai", "gpt-4", 1.0)])
        self.assertEqual(query.outcome_count, 2)
        self.assertEqual(query.outcome_labels, ("unnamed", "unnamed"))

    def test_rejections(self):
        bad = [
            None,
            {"prompt": "", "models": [{"provider": "openai", "model": "gpt-4", "weight": 1}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": True}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "", "weight": 1}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": 1, "count": 0}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": 1}], "iterations": -1},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": 1}], "iterations": 0},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": float("nan")}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": float("inf")}]},
            {"prompt": "p", "models": [{"provider": "openai", "model": "gpt-4", "weight": 1}], "outcomes": "A"},
        ]
        for payload in bad:
            with self.assertRaises(ValidationError, msg=repr(payload)):
                QueryObject.from_payload(payload)

    def test_total_weight_bounded_by_panel_size(self):
        # Each weight is within [0, 1], so only a zero total can fail.
        with self.assertRaises(ValidationError):
            QueryObject.build("p", [PanelEntry("a", "m", 0.0), PanelEntry("b", "m", 0.0)])
        QueryObject.build("p", [PanelEntry("a", "m", 1.0), PanelEntry("b", "m", 1.0)])

    def test_nan_total_weight_is_rejected(self):
        with self.assertRaises(ValidationError):
            QueryObject.build("p", [PanelEntry("a", "m", float("nan"))])

    def test_iterations_default_when_absent_or_null(self):
        panel = [{"provider": "openai", "model": "gpt-4", "weight": 1}]
        self.assertEqual(QueryObject.from_payload({"prompt": "p", "models": panel}).iterations, 1)
        self.assertEqual(QueryObject.from_payload({"prompt": "p", "models": panel, "iterations": None}).iterations, 1)

    def test_attachment_strings(self):
        png = base64.b64encode(b"\x89PNG").decode()
        image = Attachment.from_string(f"data:image/png;base64,{png}")
        self.assertEqual((image.type, image.media_type, image.content), ("image", "image/png", png))
        text = Attachment.from_string("data:text/plain;base64," + base64.b64encode(b"hello").decode())
        self.assertEqual((text.type, text.content), ("text", "hello"))
        raw = Attachment.from_string("just some notes")
        self.assertEqual((raw.type, raw.decoded()), ("text", b"just some notes"))


class TestResultRecords(unittest.TestCase):
    def test_round_trip_through_dict(self):
        result = ArbitrationResult.from_vector(["A", "B"], [1, 999999], "why")
        self.assertEqual(ArbitrationResult.from_dict(result.to_dict()), result)

    def test_empty_scores_get_placeholder(self):
        record = ArbitrationResult(scores=()).to_record()
        self.assertEqual(record["scores"], [{"outcome": "default", "score": 0}])

    def test_error_record(self):
        record = error_record("boom")
        self.assertEqual(record["error"], "boom")
        self.assertEqual(record["scores"], [{"outcome": "error", "score": 0}])


if __name__ == "__main__":
    unittest.main()
