import unittest


class TestHelpSkill(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        try:
            import loguru  # noqa: F401
        except Exception:
            raise unittest.SkipTest("Missing dependencies (loguru).")

        from core.skills import SkillRegistry
        from core.store import JsonStore
        from skills.feature_flags.skill import FeatureFlagsSkill
        from skills.help.skill import HelpSkill
        from skills.workflow.skill import WorkflowSkill

        import tempfile

        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

        self.registry = SkillRegistry({"memory": JsonStore(self._tmp.name)})
        for skill in (HelpSkill(), WorkflowSkill(), FeatureFlagsSkill()):
            await self.registry.register(skill)
        await self.registry.initialize()

    async def asyncTearDown(self):
        await self.registry.shutdown()

    async def test_help_lists_all_skills(self):
        for command in ("help", "commands", "HELP"):
            result = await self.registry.route(command, {})
            self.assertTrue(result.success)
            self.assertEqual(result.skill, "help")
            self.assertIn("*Workflow*", result.message)
            self.assertIn("`flag set <repo>", result.message)
            self.assertIn("3 skill(s) loaded", result.message)

    async def test_skills_lists_priorities(self):
        result = await self.registry.route("skills", {})
        self.assertIn("Priority: 100", result.message)
        self.assertIn("Priority: 21", result.message)

    async def test_help_for_skill_exact_and_partial(self):
        exact = await self.registry.route("help workflow", {})
        self.assertTrue(exact.success)
        self.assertIn("*Workflow Skill*", exact.message)

        partial = await self.registry.route("help flags", {})
        self.assertTrue(partial.success)
        self.assertIn("*Feature-flags Skill*", partial.message)

    async def test_help_ambiguous_and_unknown(self):
        ambiguous = await self.registry.route("help f", {})
        self.assertFalse(ambiguous.success)
        self.assertIn("Multiple skills match", ambiguous.message)

        unknown = await self.registry.route("help zzz", {})
        self.assertFalse(unknown.success)
        self.assertIn('Skill "zzz" not found', unknown.message)

    def test_pattern_to_usage(self):
        from skills.help.skill import pattern_to_usage

        self.assertEqual(pattern_to_usage(r"flag\s+get\s+(\S+)"), "flag get <word>")
        self.assertEqual(pattern_to_usage(r"ask\s+(.+)"), "ask <text>")


if __name__ == "__main__":
    unittest.main()
