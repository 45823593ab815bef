"""
Tests for core/patches.py - diff extraction and the pending patch registry.
"""

import asyncio
import shutil
import tempfile
import unittest
from pathlib import Path

from vcce.core.errors import PatchConflict, PatchNotImplemented, UnknownPatch
from vcce.core.patches import PatchRegistry, extract_patch


CREATE_DIFF = "--- /dev/null\n+++ b/hello.txt\n@@ -0,0 +1 @@\n+hello\n"


class TestExtractPatch(unittest.TestCase):
    """Test cases for extract_patch."""

    def test_extracts_first_diff_block(self):
        reply = (
            "Here is the change:\n```diff\n--- a/x\n+++ b/x\n```\n"
            "And another:\n```diff\n--- a/y\n+++ b/y\n```"
        )
        self.assertEqual(extract_patch(reply), "--- a/x\n+++ b/x\n")

    def test_patch_fence_and_case(self):
        self.assertEqual(extract_patch("```Patch\nbody\n```"), "body\n")

    def test_other_fences_are_ignored(self):
        self.assertIsNone(extract_patch("```python\nprint(1)\n```"))

    def test_empty_block_is_no_patch(self):
        self.assertIsNone(extract_patch("```diff\n\n```"))
        self.assertIsNone(extract_patch(""))
        self.assertIsNone(extract_patch(None))


class TestPatchRegistry(unittest.IsolatedAsyncioTestCase):
    """Test cases for PatchRegistry transitions."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)
        self.registry = PatchRegistry()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_register_from_reply_without_diff(self):
        self.assertIsNone(self.registry.register_from_reply(self.temp_dir, "No changes."))
        self.assertEqual(len(self.registry), 0)

    async def test_ids_are_unique(self):
        a = self.registry.register(self.temp_dir, CREATE_DIFF)
        b = self.registry.register(self.temp_dir, CREATE_DIFF)
        self.assertNotEqual(a.id, b.id)
        self.assertIs(self.registry.get(a.id), a)
        self.assertIsNone(self.registry.get("missing"))
        self.assertEqual(a.to_wire(), {"id": a.id, "diff": CREATE_DIFF})

    async def test_discard_then_unknown(self):
        patch = self.registry.register(self.temp_dir, CREATE_DIFF)
        await self.registry.discard(patch.id)

        self.assertNotIn(patch.id, self.registry)
        with self.assertRaises(UnknownPatch):
            await self.registry.discard(patch.id)
        with self.assertRaises(UnknownPatch):
            await self.registry.approve(patch.id)

    async def test_approve_applies_and_removes(self):
        patch = self.registry.register(self.temp_dir, CREATE_DIFF)
        changed = await self.registry.approve(patch.id)

        self.assertEqual(changed, ["hello.txt"])
        self.assertEqual((self.root / "hello.txt").read_text(), "hello\n")
        self.assertEqual(len(self.registry), 0)

    async def test_failed_approve_keeps_entry(self):
        patch = self.registry.register(self.temp_dir, "--- a/missing.txt\n+++ b/missing.txt\n@@ -1 +1 @@\n-a\n+b\n")
        with self.assertRaises(PatchConflict):
            await self.registry.approve(patch.id)

        self.assertIn(patch.id, self.registry)
        await self.registry.discard(patch.id)
        self.assertEqual(len(self.registry), 0)

    async def test_unsupported_diff_writes_nothing(self):
        patch = self.registry.register(self.temp_dir, "diff --git a/a b/b\nrename from a\nrename to b\n")
        with self.assertRaises(PatchNotImplemented):
            await self.registry.approve(patch.id)
        self.assertEqual(list(self.root.iterdir()), [])

    async def test_concurrent_approve_and_discard_only_one_wins(self):
        patch = self.registry.register(self.temp_dir, CREATE_DIFF)
        results = await asyncio.gather(
            self.registry.approve(patch.id),
            self.registry.discard(patch.id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, UnknownPatch)]
        self.assertEqual(len(failures), 1)
        self.assertEqual(len(self.registry), 0)

    async def test_concurrent_approves_apply_once(self):
        patch = self.registry.register(self.temp_dir, CREATE_DIFF)
        results = await asyncio.gather(
            self.registry.approve(patch.id),
            self.registry.approve(patch.id),
            return_exceptions=True,
        )

        self.assertEqual(sum(1 for r in results if r == ["hello.txt"]), 1)
        self.assertEqual(sum(1 for r in results if isinstance(r, UnknownPatch)), 1)


if __name__ == "__main__":
    unittest.main()
