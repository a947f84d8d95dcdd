"""
Tests for the Compliance Audit Scorer (``grant_engines.compliance``).

Covers:
- Export thresholds (compliance >= 90, alignment >= 100, no critical issue)
- Promotional language, placeholder, statistics and Go/No-Go detectors
- Section required-element checks from the policy pack
- Category deductions, flooring and full commercial points
- Agency alignment components, with Fast Track allocations per phase
- Determinism of the full scorer
"""

from decimal import Decimal

import pytest

from grant_config.bridges import build_institute_limits, build_scoring_rules
from grant_engines.compliance import (
    AuditContext,
    ComplianceIssue,
    PhaseAllocation,
    ScoreCategory,
    calculate_agency_alignment_score,
    calculate_compliance_score,
    check_go_no_go_criteria,
    detect_missing_statistics,
    detect_placeholders,
    detect_promotional_language,
    is_export_allowed,
    score_compliance,
    validate_section,
)
from grant_kernel.domain.project import FOAOverrides
from grant_kernel.domain.types import GrantType, ProgramType, ProjectPhase, Severity


@pytest.fixture
def rules(policy):
    return build_scoring_rules(policy)


@pytest.fixture
def limits(policy):
    return build_institute_limits(policy, "Standard NIH")


def _context(grant_type=GrantType.PHASE_II, **kwargs):
    defaults = dict(
        institute="Standard NIH",
        grant_type=grant_type,
        program_type=ProgramType.SBIR,
        direct_costs=Decimal("1000000"),
        small_business_percent=Decimal("67"),
        research_institution_percent=Decimal("0"),
        foa_number="PA-26-001",
    )
    defaults.update(kwargs)
    return AuditContext(**defaults)


def _issue(severity, category, code="TEST"):
    return ComplianceIssue(code=code, severity=severity, section="content", message=code, category=category)


class TestExportThresholds:

    def test_89_never_exports(self, rules):
        assert not is_export_allowed(89, 100, 0, rules)

    def test_90_and_100_export(self, rules):
        assert is_export_allowed(90, 100, 0, rules)

    def test_alignment_below_100(self, rules):
        assert not is_export_allowed(100, 99, 0, rules)

    def test_critical_issue_blocks(self, rules):
        assert not is_export_allowed(95, 100, 1, rules)


class TestDetectors:

    def test_promotional_language(self, rules):
        issues = detect_promotional_language("This revolutionary assay is world-class.", rules)

        assert {i.element for i in issues} == {"revolutionary", "world-class"}
        assert all(i.severity is Severity.ERROR for i in issues)
        assert all(i.category is ScoreCategory.TONE for i in issues)

    def test_promotional_terms_match_whole_words(self, rules):
        assert detect_promotional_language("A uniquely labelled antibody.", rules) == []

    def test_placeholder_per_occurrence(self, rules):
        issues = detect_placeholders("Budget TBD. Sample size TBD. [insert figure]", rules)

        assert len(issues) == 3
        assert all(i.severity is Severity.CRITICAL for i in issues)

    def test_case_sensitive_placeholder(self, rules):
        assert detect_placeholders("Compound XXX-12", rules)[0].element == "XXX"
        assert detect_placeholders("the xxx locus", rules) == []

    def test_missing_statistics(self, rules):
        issues = detect_missing_statistics("We will run an experiment.", rules)
        assert [i.code for i in issues] == ["STATS_MISSING_POWER", "STATS_MISSING_N"]

    def test_statistics_present(self, rules):
        text = "Each experiment uses n = 12 per group for 80% power; groups compared by ANOVA analysis."
        assert detect_missing_statistics(text, rules) == []

    def test_missing_test_is_warning(self, rules):
        issues = detect_missing_statistics("Results compared with sample size 30.", rules)
        assert [(i.code, i.severity) for i in issues] == [("STATS_MISSING_TEST", Severity.WARNING)]

    def test_go_no_go_required_for_phase_i(self, rules):
        issues = check_go_no_go_criteria("We will build a device.", GrantType.PHASE_I, rules)

        assert [i.code for i in issues] == ["MISSING_GO_NO_GO"]
        assert issues[0].severity is Severity.CRITICAL

    def test_go_no_go_present(self, rules):
        text = "The Go/No-Go milestone is sensitivity above 90%."
        assert check_go_no_go_criteria(text, GrantType.FAST_TRACK, rules) == []

    def test_go_no_go_not_required_for_phase_ii(self, rules):
        assert check_go_no_go_criteria("We will build a device.", GrantType.PHASE_II, rules) == []


class TestSectionRules:

    def test_missing_elements(self, rules):
        issues = validate_section("vertebrate_animals", "", rules)

        assert len(issues) == 5
        assert issues[0].code == "MISSING_DESCRIPTION_OF_PROCEDURES"
        assert all(i.category is ScoreCategory.REGULATORY for i in issues)

    def test_any_pattern_satisfies_element(self, rules):
        text = "Human subjects research approved by the IRB; minimal risk; data are de-identified."
        assert validate_section("human_subjects", text, rules) == []

    def test_unknown_section(self, rules):
        assert validate_section("budget_narrative", "", rules) == []


class TestComplianceScore:

    def test_deductions_by_severity(self, rules):
        score = calculate_compliance_score(
            [
                _issue(Severity.ERROR, ScoreCategory.STATISTICAL),
                _issue(Severity.WARNING, ScoreCategory.STATISTICAL),
                _issue(Severity.WARNING, ScoreCategory.STATISTICAL),
                _issue(Severity.WARNING, ScoreCategory.STATISTICAL),
            ],
            GrantType.PHASE_II,
            rules,
        )

        assert score.statistical == 9
        assert score.total == 89
        assert not is_export_allowed(score.total, 100, 0, rules)

    def test_categories_floor_at_zero(self, rules):
        score = calculate_compliance_score(
            [_issue(Severity.CRITICAL, ScoreCategory.TONE)] * 3, GrantType.PHASE_II, rules
        )
        assert score.tone == 0
        assert score.total == 90

    def test_phase_i_gets_full_commercial_points(self, rules):
        issues = [_issue(Severity.ERROR, ScoreCategory.COMMERCIAL)]
        assert calculate_compliance_score(issues, GrantType.PHASE_II, rules).commercial == 15
        assert calculate_compliance_score(issues, GrantType.PHASE_I, rules).commercial == 20

    def test_breakdown_accumulates_by_code(self, rules):
        score = calculate_compliance_score(
            [_issue(Severity.WARNING, ScoreCategory.TONE, "X")] * 2, GrantType.PHASE_II, rules
        )
        assert score.breakdown == {"X": 4}


class TestAgencyAlignment:

    def test_full_alignment(self, rules, limits):
        score = calculate_agency_alignment_score(_context(), limits, rules)
        assert score.total == 100

    def test_foa_missing_for_follow_on_work(self, rules, limits):
        score = calculate_agency_alignment_score(_context(foa_number=None), limits, rules)
        assert score.foa_compliance == 15
        assert score.total == 90

    def test_foa_optional_for_phase_i(self, rules, limits):
        context = _context(GrantType.PHASE_I, foa_number=None, direct_costs=Decimal("200000"))
        assert calculate_agency_alignment_score(context, limits, rules).total == 100

    def test_over_cap(self, rules, limits):
        score = calculate_agency_alignment_score(
            _context(direct_costs=Decimal("1800000")), limits, rules
        )
        assert score.budget_compliance == 0
        assert "budget_exceeded" in score.breakdown

    def test_near_cap(self, rules, limits):
        score = calculate_agency_alignment_score(
            _context(direct_costs=Decimal("1700000")), limits, rules
        )
        assert score.budget_compliance == 20

    def test_missing_cap(self, rules, limits):
        score = calculate_agency_alignment_score(
            _context(GrantType.PHASE_IIB, small_business_percent=Decimal("50")), limits, rules
        )
        assert score.budget_compliance == 0
        assert "budget_cap_missing" in score.breakdown

    def test_sbir_allocation_failure(self, rules, limits):
        score = calculate_agency_alignment_score(
            _context(small_business_percent=Decimal("49")), limits, rules
        )
        assert score.allocation_compliance == 0

    def test_sttr_partial_allocation_failure(self, rules, limits):
        context = _context(
            program_type=ProgramType.STTR,
            small_business_percent=Decimal("39"),
            research_institution_percent=Decimal("30"),
        )
        assert calculate_agency_alignment_score(context, limits, rules).allocation_compliance == 10

    def test_clinical_trial_not_allowed(self, policy, rules):
        nigms = build_institute_limits(policy, "NIGMS")
        context = _context(institute="NIGMS", clinical_trial_included=True)
        assert calculate_agency_alignment_score(context, nigms, rules).clinical_trial_compliance == 0

    def test_foa_may_allow_clinical_trial(self, policy, rules):
        nigms = build_institute_limits(policy, "NIGMS")
        context = _context(
            institute="NIGMS",
            clinical_trial_included=True,
            foa_overrides=FOAOverrides(clinical_trial_allowed=True),
        )
        assert calculate_agency_alignment_score(context, nigms, rules).clinical_trial_compliance == 25


class TestFastTrackAlignment:
    """Each Fast Track phase allocation is held to its own minimum."""

    def _fast_track(self, phase1_sb, phase2_sb, direct_costs="1200000"):
        return _context(
            GrantType.FAST_TRACK,
            direct_costs=Decimal(direct_costs),
            # flat figure mirrors the last-edited phase and must not be used
            small_business_percent=Decimal("0"),
            phase_allocations=(
                PhaseAllocation(ProjectPhase.PHASE1, Decimal(phase1_sb), Decimal("0")),
                PhaseAllocation(ProjectPhase.PHASE2, Decimal(phase2_sb), Decimal("0")),
            ),
        )

    def test_phase2_at_its_own_minimum(self, rules, limits):
        score = calculate_agency_alignment_score(self._fast_track("67", "55"), limits, rules)

        assert score.allocation_compliance == 25
        assert score.total == 100

    def test_phase1_below_feasibility_minimum(self, rules, limits):
        score = calculate_agency_alignment_score(self._fast_track("60", "55"), limits, rules)

        assert score.allocation_compliance == 0
        assert score.breakdown["sbir_allocation_failed"] == 25

    def test_phase2_below_minimum(self, rules, limits):
        score = calculate_agency_alignment_score(self._fast_track("67", "45"), limits, rules)
        assert score.allocation_compliance == 0

    def test_sttr_failures_counted_once(self, rules, limits):
        context = _context(
            GrantType.FAST_TRACK,
            program_type=ProgramType.STTR,
            direct_costs=Decimal("1200000"),
            phase_allocations=(
                PhaseAllocation(ProjectPhase.PHASE1, Decimal("35"), Decimal("40")),
                PhaseAllocation(ProjectPhase.PHASE2, Decimal("35"), Decimal("40")),
            ),
        )
        assert calculate_agency_alignment_score(context, limits, rules).allocation_compliance == 10

    def test_combined_cap_applies(self, rules, limits):
        score = calculate_agency_alignment_score(
            self._fast_track("67", "55", direct_costs="2100000"), limits, rules
        )
        assert score.budget_compliance == 0


class TestScoreCompliance:

    def test_clean_submission_exports(self, rules, limits):
        result = score_compliance("We will build the device.", _context(), (), limits, rules)

        assert result.compliance_score.total == 100
        assert result.agency_alignment_score.total == 100
        assert result.export_allowed
        assert result.passed

    def test_placeholder_blocks_export(self, rules, limits):
        result = score_compliance("We will build the device. Budget TBD.", _context(), (), limits, rules)

        assert not result.export_allowed
        assert len(result.blocking_issues) == 1
        assert result.compliance_score.total == 90

    def test_deterministic(self, rules, limits):
        text = "This revolutionary experiment compares groups."
        sections = ("specific_aims", "rigor_reproducibility")
        first = score_compliance(text, _context(), sections, limits, rules)
        second = score_compliance(text, _context(), sections, limits, rules)
        assert first == second
