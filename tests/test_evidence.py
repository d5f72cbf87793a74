"""Tests for manifest parsing and multi-bundle query combination."""
import base64
import json
import tempfile
import unittest
from pathlib import Path

from arbiter.errors import InfrastructureError, ValidationError
from arbiter.evidence import ManifestParser, detect_media_type, sanitize_addendum
from arbiter.query import PanelEntry

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

NODES = [
    {"AI_PROVIDER": "OpenAI", "AI_MODEL": "gpt-4o", "NO_COUNTS": 2, "WEIGHT": 0.6},
    {"AI_PROVIDER": "Anthropic", "AI_MODEL": "claude-3-5-sonnet-20241022", "NO_COUNTS": 1, "WEIGHT": 0.4},
]


class EvidenceTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.fetched = []
        self.remote = {}
        self.parser = ManifestParser(self._fetch)

    def tearDown(self):
        self._tmp.cleanup()

    def _fetch(self, cid):
        self.fetched.append(cid)
        if cid not in self.remote:
            raise InfrastructureError(f"Unable to fetch {cid}")
        return self.remote[cid]

    def write_bundle(self, name, manifest, primary=None, files=None):
        root = self.tmp / name
        root.mkdir()
        (root / "manifest.json").write_text(json.dumps(manifest))
        if primary is not None:
            (root / "primary_query.json").write_text(json.dumps(primary))
        for filename, content in (files or {}).items():
            (root / filename).write_bytes(content if isinstance(content, bytes) else content.encode())
        return root


class TestManifestParser(EvidenceTestCase):
    def test_full_manifest(self):
        root = self.write_bundle(
            "bundle",
            {
                "version": "1.0",
                "name": "dispute-42",
                "addendum": "Late evidence",
                "primary": {"filename": "primary_query.json"},
                "juryParameters": {"AI_NODES": NODES, "ITERATIONS": 2, "NUMBER_OF_OUTCOMES": 2},
                "additional": [{"name": "notes", "type": "UTF8", "filename": "notes.txt"}],
            },
            primary={"query": "Was the contract breached?", "outcomes": ["Breached", "Not breached"],
                     "references": ["https://example.org/contract"]},
            files={"notes.txt": "Delivery was two weeks late."},
        )
        manifest = self.parser.parse(root)

        self.assertEqual(manifest.prompt, "Was the contract breached?")
        self.assertEqual(manifest.outcomes, ["Breached", "Not breached"])
        self.assertEqual(manifest.references, ["https://example.org/contract"])
        self.assertEqual(manifest.iterations, 2)
        self.assertEqual(manifest.models, [
            PanelEntry("OpenAI", "gpt-4o", 0.6, 2),
            PanelEntry("Anthropic", "claude-3-5-sonnet-20241022", 0.4, 1),
        ])
        attachments = manifest.attachments()
        self.assertEqual(len(attachments), 1)
        self.assertEqual(attachments[0].type, "text")
        self.assertEqual(attachments[0].content, "Delivery was two weeks late.")

    def test_defaults_when_jury_parameters_missing(self):
        root = self.write_bundle(
            "bundle",
            {"version": "1.0", "primary": {"filename": "primary_query.json"},
             "juryParameters": {"NUMBER_OF_OUTCOMES": 3}},
            primary={"query": "Pick one"},
        )
        manifest = self.parser.parse(root)
        self.assertEqual(manifest.outcomes, ["outcome1", "outcome2", "outcome3"])
        self.assertEqual(manifest.models, [PanelEntry("OpenAI", "gpt-4", 1.0, 1)])
        self.assertEqual(manifest.iterations, 1)

    def test_primary_fetched_by_hash(self):
        self.remote["QmPrimary"] = json.dumps({"query": "Remote question"}).encode()
        root = self.write_bundle("bundle", {"version": "1.0", "primary": {"hash": "QmPrimary"}})
        self.assertEqual(self.parser.parse(root).prompt, "Remote question")
        self.assertTrue((root / "primary_QmPrimary").exists())

    def test_primary_needs_exactly_one_source(self):
        root = self.write_bundle(
            "bundle",
            {"version": "1.0", "primary": {"filename": "primary_query.json", "hash": "QmX"}},
            primary={"query": "q"},
        )
        with self.assertRaises(ValidationError):
            self.parser.parse(root)

    def test_missing_version(self):
        root = self.write_bundle("bundle", {"primary": {"filename": "primary_query.json"}}, primary={"query": "q"})
        with self.assertRaises(ValidationError) as ctx:
            self.parser.parse(root)
        self.assertIn("version", ctx.exception.message)

    def test_missing_manifest_is_infrastructure(self):
        (self.tmp / "empty").mkdir()
        with self.assertRaises(InfrastructureError):
            self.parser.parse(self.tmp / "empty")

    def test_primary_without_query(self):
        root = self.write_bundle(
            "bundle", {"version": "1.0", "primary": {"filename": "primary_query.json"}}, primary={"outcomes": ["a"]}
        )
        with self.assertRaises(ValidationError):
            self.parser.parse(root)

    def test_paths_may_not_escape_bundle(self):
        (self.tmp / "secret.json").write_text(json.dumps({"query": "leak"}))
        root = self.write_bundle("bundle", {"version": "1.0", "primary": {"filename": "../secret.json"}})
        with self.assertRaises(ValidationError):
            self.parser.parse(root)

    def test_support_files_are_fetched_and_sniffed(self):
        self.remote["QmImage"] = PNG
        root = self.write_bundle(
            "bundle",
            {
                "version": "1.0",
                "primary": {"filename": "primary_query.json"},
                "support": [{"name": "photo", "hash": {"cid": "QmImage"}}, {"name": "gone", "hash": "QmMissing"}],
            },
            primary={"query": "q"},
        )
        manifest = self.parser.parse(root)
        attachments = manifest.attachments()

        self.assertEqual(len(attachments), 1)
        self.assertEqual(attachments[0].media_type, "image/png")
        self.assertEqual(base64.b64decode(attachments[0].content), PNG)
        self.assertEqual(self.fetched, ["QmImage", "QmMissing"])

    def test_ipfs_additional_entries(self):
        self.remote["QmNotes"] = b"fetched notes"
        root = self.write_bundle(
            "bundle",
            {
                "version": "1.0",
                "primary": {"filename": "primary_query.json"},
                "additional": [{"name": "remote", "type": "ipfs/cid", "hash": "QmNotes"}],
            },
            primary={"query": "q"},
        )
        attachment = self.parser.parse(root).attachments()[0]
        self.assertEqual((attachment.type, attachment.content), ("text", "fetched notes"))


class TestCombination(EvidenceTestCase):
    def _primary(self, **extra):
        manifest = {
            "version": "1.0",
            "name": "main",
            "addendum": "Clarification",
            "primary": {"filename": "primary_query.json"},
            "juryParameters": {"AI_NODES": NODES, "ITERATIONS": 1, "NUMBER_OF_OUTCOMES": 2},
            "bCIDs": {"witness": "Statement from the witness"},
        }
        manifest.update(extra)
        return self.write_bundle(
            "primary", manifest, primary={"query": "Who is at fault?", "outcomes": ["Driver", "Cyclist"]}
        )

    def _secondary(self, name="witness"):
        return self.write_bundle(
            "secondary",
            {"version": "1.0", "name": name, "primary": {"filename": "primary_query.json"}},
            primary={"query": "I saw the light turn red.", "references": ["https://example.org/cam"]},
        )

    def test_combined_prompt(self):
        paths = {"QmA": self._primary(), "QmB": self._secondary()}
        primary, secondaries = self.parser.parse_multiple(paths, ["QmA", "QmB"])
        query = self.parser.combine_query(primary, secondaries)

        self.assertEqual(
            query.prompt,
            "Who is at fault?"
            "\n\n**\nStatement from the witness:\nName: witness\nI saw the light turn red."
            "\n\nReferences:\nwitness: \nhttps://example.org/cam\n\n",
        )
        self.assertEqual(query.outcomes, ("Driver", "Cyclist"))
        self.assertEqual(len(query.models), 2)

    def test_addendum_is_sanitized_and_appended(self):
        paths = {"QmA": self._primary()}
        primary, _ = self.parser.parse_multiple(paths, ["QmA"])
        query = self.parser.query_from_manifest(primary, "<b>the {light} was red</b>")
        self.assertTrue(query.prompt.endswith("\n\nAddendum: \nClarification: bthe light was red/b"))

    def test_addendum_ignored_without_manifest_label(self):
        paths = {"QmA": self._primary(addendum=None)}
        primary, _ = self.parser.parse_multiple(paths, ["QmA"])
        self.assertEqual(self.parser.query_from_manifest(primary, "extra").prompt, "Who is at fault?")

    def test_no_secondaries_matches_single_bundle(self):
        primary, _ = self.parser.parse_multiple({"QmA": self._primary()}, ["QmA"])
        self.assertEqual(
            self.parser.combine_query(primary, [], "note"),
            self.parser.query_from_manifest(primary, "note"),
        )

    def test_bcid_count_mismatch(self):
        paths = {"QmA": self._primary(bCIDs={"a": "A", "b": "B"}), "QmB": self._secondary()}
        with self.assertRaises(ValidationError) as ctx:
            self.parser.parse_multiple(paths, ["QmA", "QmB"])
        self.assertIn("does not match", ctx.exception.message)

    def test_missing_bcids(self):
        paths = {"QmA": self._primary(bCIDs=None), "QmB": self._secondary()}
        with self.assertRaises(ValidationError):
            self.parser.parse_multiple(paths, ["QmA", "QmB"])

    def test_name_mismatch_only_warns(self):
        paths = {"QmA": self._primary(), "QmB": self._secondary(name="bystander")}
        with self.assertLogs("arbiter.evidence", level="WARNING") as logs:
            _, secondaries = self.parser.parse_multiple(paths, ["QmA", "QmB"])
        self.assertEqual(secondaries[0].expected_name, "witness")
        self.assertTrue(any("does not match" in line for line in logs.output))


class TestHelpers(unittest.TestCase):
    def test_detect_media_type(self):
        self.assertEqual(detect_media_type(PNG), "image/png")
        self.assertEqual(detect_media_type(b"\xff\xd8\xff\xdb"), "image/jpeg")
        self.assertEqual(detect_media_type(b"GIF87a...."), "image/gif")
        self.assertEqual(detect_media_type(b"RIFF\x00\x00\x00\x00WEBPVP8 "), "image/webp")
        self.assertEqual(detect_media_type(b"<svg xmlns='x'/>"), "image/svg+xml")
        self.assertEqual(detect_media_type(b"plain words\n"), "text/plain")
        self.assertEqual(detect_media_type(b"\x00\x01\x02\x03"), "application/octet-stream")

    def test_sanitize_addendum(self):
        self.assertEqual(sanitize_addendum("<script>{x}</script>"), "scriptx/script")


if __name__ == "__main__":
    unittest.main()
