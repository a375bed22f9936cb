"""Tests for repairflow.navigation.navigator module."""

from dataclasses import FrozenInstanceError

import pytest

from repairflow.backends.base import CatalogScope
from repairflow.core.config import NavigatorConfig
from repairflow.core.errors import PlatformTimeoutError, StaleSessionError
from repairflow.execution.diagnostics import DiagnosticHook
from repairflow.execution.retry import RetryContext
from repairflow.navigation.matching import MatchMethod
from repairflow.navigation.navigator import (
    CategoryTreeNavigator,
    NavigationResult,
    ResolutionMethod,
    build_add_on_prompt,
    build_category_prompt,
    build_repair_context,
    level_label,
)
from repairflow.playbook.models import Diagnosis, Vehicle

from tests.helpers import FakeCatalog, RecordingSleep, ScriptedCategorizer

CONTEXT = "Vehicle: 2018 Honda Civic 2.0L\nDTC codes: P0420\n"


class RecordingHook(DiagnosticHook):
    def __init__(self):
        self.points = []

    async def capture(self, point, data):
        self.points.append((point, data))


def make_navigator(catalog, categorizer=None, **kwargs):
    kwargs.setdefault("sleep", RecordingSleep())
    return CategoryTreeNavigator(catalog, categorizer or ScriptedCategorizer(), **kwargs)


class TestPrompts:
    """Tests for prompt building helpers."""

    def test_repair_context(self):
        """Context lists vehicle, codes, top cause and repair."""
        context = build_repair_context(
            Vehicle(year=2018, make="Honda", model="Civic", displacement="2.0L"),
            Diagnosis(
                codes=["P0420", "P0430"],
                causes=["Failed catalytic converter"],
                repair_description="Replace catalytic converter",
            ),
        )
        assert context.startswith("Vehicle: 2018 Honda Civic 2.0L\n")
        assert "DTC codes: P0420, P0430" in context
        assert "Diagnosis: Failed catalytic converter" in context
        assert "Repair: Replace catalytic converter" in context

    def test_repair_context_partial_vehicle(self):
        """Missing vehicle fields do not leave stray spaces."""
        context = build_repair_context(Vehicle(make="Honda"), Diagnosis())
        assert context == "Vehicle: Honda\n"

    def test_category_prompt_numbers_options(self):
        """Options are listed one per line, numbered from 1."""
        prompt = build_category_prompt(CONTEXT, ["Engine", "Brakes"], "Primary System", "Root")
        assert "Current level: Primary System" in prompt
        assert "Parent category: Root" in prompt
        assert "1. Engine\n2. Brakes" in prompt

    def test_add_on_prompt_mentions_none(self):
        """The add-on prompt asks for NONE when nothing applies."""
        prompt = build_add_on_prompt(CONTEXT, ["Road Test"], "Converter R&R")
        assert "Base procedure: Converter R&R" in prompt
        assert '"NONE"' in prompt

    def test_level_labels(self):
        """Known levels have names; deeper ones are numbered."""
        assert level_label(1) == "Primary System"
        assert level_label(9) == "Level 9"


class TestTreeWalk:
    """Tests for walking the category levels."""

    async def test_single_options_need_no_categorizer(self):
        """Single-option levels are auto-selected without a categorization call."""
        catalog = FakeCatalog(levels=[["Exhaust"], ["Converter"]], hours=1.2)
        categorizer = ScriptedCategorizer()
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert categorizer.prompts == []
        assert [d.method for d in result.decisions] == [
            ResolutionMethod.AUTO_SINGLE,
            ResolutionMethod.AUTO_SINGLE,
        ]
        assert result.procedure == "Converter"
        assert result.hours == 1.2

    async def test_model_pick(self):
        """With several options the categorizer's answer is selected."""
        catalog = FakeCatalog(levels=[["Engine", "Exhaust & Emissions", "Brakes"]])
        categorizer = ScriptedCategorizer(["2. Exhaust & Emissions"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        decision = result.decisions[0]
        assert decision.method is ResolutionMethod.MODEL_PICK
        assert decision.match is MatchMethod.EXACT
        assert decision.label == "Exhaust & Emissions"
        assert decision.answer == "2. Exhaust & Emissions"
        assert catalog.selected_in(CatalogScope.TREE) == ["Exhaust & Emissions"]
        assert "1. Engine" in categorizer.prompts[0]

    async def test_token_overlap_is_fuzzy_fallback(self):
        """An answer resolved only by token overlap is labelled fuzzy-fallback."""
        catalog = FakeCatalog(levels=[["Exhaust & Emissions", "Brakes"]])
        categorizer = ScriptedCategorizer(["emissions exhaust system"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.decisions[0].method is ResolutionMethod.FUZZY_FALLBACK
        assert result.decisions[0].match is MatchMethod.TOKEN_OVERLAP

    async def test_ancestor_options_are_excluded(self):
        """Options still visible from the previous level are not offered again."""
        catalog = FakeCatalog(
            levels=[["Engine", "Exhaust"], ["Converter"]],
            echo_parent=True,
        )
        categorizer = ScriptedCategorizer(["Exhaust"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert len(categorizer.prompts) == 1
        assert result.decisions[1].method is ResolutionMethod.AUTO_SINGLE
        assert result.decisions[1].label == "Converter"

    async def test_unresolvable_answer_fails(self):
        """A level whose answer matches nothing ends the walk unsuccessfully."""
        hook = RecordingHook()
        catalog = FakeCatalog(levels=[["Engine", "Brakes"]])
        categorizer = ScriptedCategorizer(["xyz"])
        result = await make_navigator(catalog, categorizer, diagnostics=hook).navigate(CONTEXT)

        assert not result.success
        assert "Primary System" in result.error
        assert "Engine, Brakes" in result.error
        assert result.decisions[-1].method is ResolutionMethod.FAILED
        assert catalog.confirm_calls == 0
        assert hook.points[0][0] == "navigator.failed"
        assert hook.points[0][1]["options"] == ["Engine", "Brakes"]

    async def test_no_answer_fails(self):
        """No categorization answer and no hint fails the level."""
        catalog = FakeCatalog(levels=[["Engine", "Brakes"]])
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert not result.success

    async def test_select_failure_retries_closest_other(self):
        """If selecting the resolved option fails, the closest other option is tried."""
        catalog = FakeCatalog(
            levels=[["Front Brake Pads", "Rear Brake Pads", "Rotors"]],
            unclickable=("Front Brake Pads",),
        )
        categorizer = ScriptedCategorizer(["Front Brake Pads"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert result.decisions[0].label == "Rear Brake Pads"
        assert result.decisions[0].method is ResolutionMethod.FUZZY_FALLBACK

    async def test_max_levels_bounds_walk(self):
        """The walk never descends past max_levels."""
        catalog = FakeCatalog(levels=[["A"], ["B"], ["C"], ["D"]])
        result = await make_navigator(catalog, max_levels=2).navigate(CONTEXT)

        assert result.success
        assert len(result.decisions) == 2
        assert catalog.selected_in(CatalogScope.TREE) == ["A", "B"]

    def test_max_levels_validated(self):
        """max_levels must be between 1 and 7."""
        with pytest.raises(ValueError):
            make_navigator(FakeCatalog(), max_levels=8)

    async def test_settle_delay_after_each_selection(self):
        """A fixed pause follows each selection and the confirmation."""
        sleep = RecordingSleep()
        catalog = FakeCatalog(levels=[["A"], ["B"]])
        await make_navigator(
            catalog, sleep=sleep, settle_seconds=2.0, confirm_settle_seconds=3.0
        ).navigate(CONTEXT)
        assert sleep.delays == [2.0, 2.0, 3.0]


class TestCategorizerFailures:
    """Categorization errors mean no decision, never a crash."""

    async def test_categorizer_error_is_no_decision(self):
        """A failing categorizer leaves the level unresolved."""
        catalog = FakeCatalog(levels=[["Engine", "Brakes"]])
        categorizer = ScriptedCategorizer([StaleSessionError("redirected to login")])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)
        assert not result.success

    async def test_categorizer_retried_when_configured(self):
        """With a retry context, a transient categorizer failure is retried."""
        catalog = FakeCatalog(levels=[["Engine", "Brakes"]])
        categorizer = ScriptedCategorizer([PlatformTimeoutError("slow"), "Brakes"])
        navigator = make_navigator(
            catalog, categorizer, categorizer_retry=RetryContext(max_retries=1)
        )
        result = await navigator.navigate(CONTEXT)
        assert result.success
        assert len(categorizer.prompts) == 2

    async def test_browser_errors_propagate(self):
        """Collaborator exceptions reach the caller's retry policy."""
        catalog = FakeCatalog(list_error=PlatformTimeoutError("page hung"))
        with pytest.raises(PlatformTimeoutError):
            await make_navigator(catalog).navigate(CONTEXT)

    async def test_browser_retry_resumes_at_failed_level(self):
        """A stale session mid-tree is retried at that level, not from the root."""
        catalog = FakeCatalog(
            levels=[["Exhaust"], ["Converter"], ["Front"]],
            tree_errors={1: StaleSessionError("page detached")},
        )
        sleep = RecordingSleep()
        navigator = make_navigator(
            catalog, browser_retry=RetryContext(max_retries=1, jitter_fraction=0.0), sleep=sleep
        )
        result = await navigator.navigate(CONTEXT)

        assert result.success
        assert [(d.level, d.label) for d in result.decisions] == [
            (1, "Exhaust"),
            (2, "Converter"),
            (3, "Front"),
        ]
        assert catalog.selected_in(CatalogScope.TREE) == ["Exhaust", "Converter", "Front"]
        assert 1.0 in sleep.delays

    async def test_browser_retry_exhausted_propagates(self):
        """Errors that outlast the browser retries still reach the caller."""
        catalog = FakeCatalog(list_error=PlatformTimeoutError("page hung"))
        navigator = make_navigator(catalog, browser_retry=RetryContext(max_retries=1))
        with pytest.raises(PlatformTimeoutError):
            await navigator.navigate(CONTEXT)


class TestLeaf:
    """Tests for procedure selection, probes and confirmation."""

    async def test_procedure_hours_suffix_stripped(self):
        """The procedure label is reported without its hours annotation."""
        catalog = FakeCatalog(
            levels=[["Exhaust"]],
            procedures=["Converter R&R (1.2h, $150)", "O2 Sensor R&R (0.4h, $50)"],
        )
        categorizer = ScriptedCategorizer(["Converter R&R"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert result.procedure == "Converter R&R"
        assert catalog.selected_in(CatalogScope.PROCEDURE) == ["Converter R&R (1.2h, $150)"]

    async def test_procedures_differing_only_in_hours(self):
        """Rows sharing a name are told apart by their full label."""
        catalog = FakeCatalog(
            levels=[["Exhaust"]],
            procedures=["Converter R&R (1.2h, $150)", "Converter R&R (2.0h, $250)"],
        )
        categorizer = ScriptedCategorizer(["Converter R&R (2.0h, $250)"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert catalog.selected_in(CatalogScope.PROCEDURE) == ["Converter R&R (2.0h, $250)"]
        assert result.procedure == "Converter R&R"
        assert result.decisions[-1].match is MatchMethod.EXACT

    async def test_ambiguous_procedure_name_picks_first_row(self):
        """A bare name matching several rows resolves to the first one shown."""
        catalog = FakeCatalog(
            levels=[["Exhaust"]],
            procedures=["Converter R&R (1.2h, $150)", "Converter R&R (2.0h, $250)"],
        )
        categorizer = ScriptedCategorizer(["Converter R&R"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert catalog.selected_in(CatalogScope.PROCEDURE) == ["Converter R&R (1.2h, $150)"]

    async def test_procedure_falls_back_to_hint(self):
        """Without an answer, the repair description picks the procedure."""
        catalog = FakeCatalog(
            levels=[["Exhaust"]],
            procedures=["Oxygen Sensor Replace", "Catalytic Converter Replace"],
        )
        result = await make_navigator(catalog).navigate(
            CONTEXT, fallback_hint="Replace catalytic converter"
        )

        assert result.success
        assert result.procedure == "Catalytic Converter Replace"
        assert result.decisions[-1].method is ResolutionMethod.FUZZY_FALLBACK

    async def test_unresolved_procedure_fails(self):
        """No procedure decision ends unsuccessfully without confirming."""
        catalog = FakeCatalog(levels=[["Exhaust"]], procedures=["A", "B"])
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert not result.success
        assert "operational procedure" in result.error
        assert catalog.confirm_calls == 0

    async def test_qualifier_and_add_ons(self):
        """A qualifier and the applicable add-ons are selected before confirming."""
        catalog = FakeCatalog(
            levels=[["Exhaust"]],
            qualifiers=["Front", "Rear"],
            add_ons=["Replace Gaskets", "Replace O2 Sensor", "Road Test"],
        )
        categorizer = ScriptedCategorizer(["Front", "1. Replace Gaskets\n2. Road Test"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)

        assert result.success
        assert result.qualifier == "Front"
        assert result.add_ons == ("Replace Gaskets", "Road Test")
        assert catalog.selected_in(CatalogScope.ADD_ON) == ["Replace Gaskets", "Road Test"]

    async def test_add_ons_none(self):
        """A NONE answer selects no add-ons."""
        catalog = FakeCatalog(levels=[["Exhaust"]], add_ons=["Road Test"])
        categorizer = ScriptedCategorizer(["NONE"])
        result = await make_navigator(catalog, categorizer).navigate(CONTEXT)
        assert result.add_ons == ()

    async def test_unresolved_qualifier_is_skipped(self):
        """A qualifier the categorizer cannot resolve is skipped, not fatal."""
        catalog = FakeCatalog(levels=[["Exhaust"]], qualifiers=["Front", "Rear"])
        result = await make_navigator(catalog, probe_add_ons=False).navigate(CONTEXT)
        assert result.success
        assert result.qualifier is None

    async def test_probes_disabled(self):
        """Disabled probes never query the catalog's leaf options."""
        catalog = FakeCatalog(levels=[["Exhaust"]], qualifiers=["Front", "Rear"])
        categorizer = ScriptedCategorizer()
        navigator = make_navigator(
            catalog, categorizer, probe_qualifier=False, probe_add_ons=False
        )
        result = await navigator.navigate(CONTEXT)
        assert result.success
        assert categorizer.prompts == []

    async def test_not_confirmable(self):
        """A leaf that offers no confirmation fails."""
        catalog = FakeCatalog(levels=[["Exhaust"]], confirmable=False)
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert not result.success
        assert "No confirmable leaf" in result.error

    async def test_confirm_rejected(self):
        """A rejected confirmation fails with the procedure name."""
        catalog = FakeCatalog(levels=[["Exhaust"]], confirm_ok=False)
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert not result.success
        assert '"Exhaust"' in result.error

    @pytest.mark.parametrize(
        "raw,expected", [(1.5, 1.5), ("2.3 hrs", 2.3), ("n/a", None), (None, None)]
    )
    async def test_hours_parsing(self, raw, expected):
        """Hours are parsed from whatever the catalog displays."""
        catalog = FakeCatalog(levels=[["Exhaust"]], hours=raw)
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert result.hours == expected

    async def test_hours_read_only(self):
        """Hours are read once and the result cannot be modified."""
        catalog = FakeCatalog(levels=[["Exhaust"]], hours=1.2)
        result = await make_navigator(catalog).navigate(CONTEXT)
        assert catalog.reads == [CatalogScope.HOURS]
        with pytest.raises(FrozenInstanceError):
            result.hours = 9.9


class TestFromConfig:
    """Tests for building a navigator from configuration."""

    def test_from_config(self):
        """Config values are applied."""
        navigator = CategoryTreeNavigator.from_config(
            FakeCatalog(),
            ScriptedCategorizer(),
            NavigatorConfig(max_levels=4, settle_seconds=0.5, probe_add_ons=False),
        )
        assert navigator.max_levels == 4
        assert navigator.settle_seconds == 0.5
        assert navigator.probe_add_ons is False


class TestNavigationResult:
    """Tests for result serialization."""

    def test_to_dict(self):
        """Results serialize decisions and add-ons as lists."""
        result = NavigationResult(success=False, error="nope")
        assert result.to_dict() == {
            "success": False,
            "decisions": [],
            "procedure": None,
            "hours": None,
            "qualifier": None,
            "add_ons": [],
            "error": "nope",
        }
