"""
Tests for project context aggregation: ignore matchers, the tree walk and
the per-project ContextCache.
"""

import asyncio
import shutil
import tempfile
import time
import unittest
from pathlib import Path

from vcce.context.cache import ContextCache
from vcce.context.ignore import (
    GitignoreMatcher,
    PrefixIgnoreMatcher,
    build_ignore_matcher,
    read_ignore_patterns,
)
from vcce.context.sources.project import build_project_context, iter_project_files


class ProjectTestCase(unittest.TestCase):
    """Creates a scratch project directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, rel_path: str, content="x", binary=False):
        path = self.root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if binary:
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path


class TestIgnoreMatchers(ProjectTestCase):
    """Test cases for ignore pattern matching."""

    def test_read_ignore_patterns_skips_comments_and_blanks(self):
        self.write(".gitignore", "# comment\n\nbuild/\n  *.log  \n")
        self.assertEqual(read_ignore_patterns(self.root), ["build/", "*.log"])

    def test_missing_ignore_file_gives_no_patterns(self):
        self.assertEqual(read_ignore_patterns(self.root), [])

    def test_prefix_matcher_is_literal(self):
        matcher = PrefixIgnoreMatcher(["node_modules", "/dist", "*.log"])
        self.assertTrue(matcher.ignores("node_modules/"))
        self.assertTrue(matcher.ignores("node_modules/pkg/index.js"))
        self.assertTrue(matcher.ignores("dist/app.js"))
        self.assertFalse(matcher.ignores("src/app.log"))
        self.assertFalse(matcher.ignores("src/node_modules.txt"))

    def test_gitignore_glob_and_directory_patterns(self):
        matcher = GitignoreMatcher(["*.log", "build/", "/secret.txt", "docs/*.tmp"])

        self.assertTrue(matcher.ignores("app.log"))
        self.assertTrue(matcher.ignores("src/deep/app.log"))
        self.assertTrue(matcher.ignores("build/"))
        self.assertTrue(matcher.ignores("src/build/"))
        self.assertTrue(matcher.ignores("build/out.js"))
        self.assertFalse(matcher.ignores("build"))  # a file named build
        self.assertTrue(matcher.ignores("secret.txt"))
        self.assertFalse(matcher.ignores("src/secret.txt"))
        self.assertTrue(matcher.ignores("docs/a.tmp"))
        self.assertFalse(matcher.ignores("src/main.py"))

    def test_gitignore_negation(self):
        matcher = GitignoreMatcher(["*.log", "!keep.log"])
        self.assertTrue(matcher.ignores("debug.log"))
        self.assertFalse(matcher.ignores("keep.log"))

    def test_build_matcher_styles(self):
        self.write(".gitignore", "*.log\n")
        self.assertIsInstance(build_ignore_matcher(self.root), GitignoreMatcher)
        self.assertIsInstance(build_ignore_matcher(self.root, style="prefix"), PrefixIgnoreMatcher)

    def test_unavailable_factory_falls_back_to_prefix(self):
        self.write(".gitignore", "vendor\n")
        matcher = build_ignore_matcher(self.root, factory=lambda patterns: None)
        self.assertIsInstance(matcher, PrefixIgnoreMatcher)
        self.assertTrue(matcher.ignores("vendor/lib.js"))

    def test_supplied_factory_takes_precedence(self):
        class Everything:
            def ignores(self, rel_path):
                return True

        matcher = build_ignore_matcher(self.root, style="prefix", factory=lambda patterns: Everything())
        self.assertTrue(matcher.ignores("anything"))


class TestProjectContext(ProjectTestCase):
    """Test cases for the tree walk and aggregation."""

    def test_walk_skips_vcs_and_ignored_paths(self):
        self.write("src/main.py", "print('hi')\n")
        self.write(".git/config", "[core]\n")
        self.write("node_modules/pkg/index.js", "module.exports = 1\n")
        self.write("README.md", "# readme\n")

        matcher = GitignoreMatcher(["node_modules/"])
        files = [rel for rel, _ in iter_project_files(self.root, matcher)]

        self.assertEqual(files, ["README.md", "src/main.py"])

    def test_binary_files_emit_placeholder_only(self):
        self.write("logo.png", b"\x89PNG\r\n\x1a\nSECRETBYTES", binary=True)
        self.write("app.py", "x = 1\n")

        context = build_project_context(self.root, 10_000)

        self.assertIn("=== app.py ===\nx = 1\n", context.text)
        self.assertIn("logo.png (binary, content omitted)", context.text)
        self.assertNotIn("SECRETBYTES", context.text)
        self.assertEqual(context.file_count, 2)
        self.assertFalse(context.truncated)

    def test_budget_overshoot_is_bounded_by_one_file(self):
        for i in range(20):
            self.write(f"f{i:02d}.txt", "a" * 100)

        budget = 450
        context = build_project_context(self.root, budget)
        size = len(context.text.encode("utf-8"))
        largest_block = len("=== f00.txt ===\n".encode()) + 100 + 2

        self.assertTrue(context.truncated)
        self.assertGreater(size, budget)
        self.assertLessEqual(size, budget + largest_block)
        self.assertLess(context.file_count, 20)

    def test_deep_tree_does_not_recurse(self):
        path = "/".join(f"d{i}" for i in range(200))
        self.write(f"{path}/leaf.txt", "leaf")
        context = build_project_context(self.root, 1_000_000)
        self.assertIn("leaf.txt ===\nleaf", context.text)


class TestContextCache(ProjectTestCase):
    """Test cases for ContextCache refresh semantics."""

    def test_cached_text_reused_until_refresh(self):
        self.write("a.txt", "first")
        cache = ContextCache(budget_bytes=10_000)

        async def scenario():
            s1, created1 = await cache.get_session(str(self.root))
            self.write("a.txt", "second")
            s2, created2 = await cache.get_session(str(self.root))
            s3, created3 = await cache.get_session(str(self.root), refresh=True)
            return s1.files_text, created1, s2.files_text, created2, s3.files_text, created3

        t1, c1, t2, c2, t3, c3 = asyncio.run(scenario())

        self.assertTrue(c1)
        self.assertFalse(c2)
        self.assertEqual(t1, t2)
        self.assertIn("first", t2)
        self.assertTrue(c3)
        self.assertIn("second", t3)
        self.assertEqual(len(cache), 1)
        self.assertIn("second", cache.peek(str(self.root)).files_text)

        cache.clear()
        self.assertIsNone(cache.peek(str(self.root)))

    def test_equivalent_paths_share_one_session(self):
        self.write("a.txt", "x")
        cache = ContextCache()

        async def scenario():
            await cache.get_session(str(self.root))
            return await cache.get_session(str(self.root) + "/./")

        _, created = asyncio.run(scenario())
        self.assertFalse(created)
        self.assertEqual(len(cache), 1)

    def test_concurrent_requests_build_once(self):
        self.write("a.txt", "x")
        cache = ContextCache()

        async def scenario():
            return await asyncio.gather(*(cache.get_session(str(self.root)) for _ in range(5)))

        results = asyncio.run(scenario())
        self.assertEqual(sum(1 for _, created in results if created), 1)

    def test_ttl_expiry_rebuilds(self):
        self.write("a.txt", "old")
        cache = ContextCache(ttl=0.05)

        async def scenario():
            await cache.get_session(str(self.root))
            self.write("a.txt", "new")
            time.sleep(0.1)
            return await cache.get_session(str(self.root))

        session, created = asyncio.run(scenario())
        self.assertTrue(created)
        self.assertIn("new", session.files_text)

    def test_missing_project_raises(self):
        cache = ContextCache()
        with self.assertRaises(NotADirectoryError):
            asyncio.run(cache.get_session(str(self.root / "missing")))


if __name__ == "__main__":
    unittest.main()
