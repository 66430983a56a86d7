"""Template set shipped with this build of margo.

The content here is immutable for a given release; the reconciliation
engine compares it against what it last wrote to the user's directory.
Editing any entry in a release changes its fingerprint and makes the
next ``margo refresh`` offer the new content to users.
"""

from __future__ import annotations

from .models import TemplateId, TemplateKind

_BASELINE_DEFAULT = """\
# default baseline covariates
# standard set for NZAVS causal inference studies

vars = [
  # demographics
  "age",
  "born_nz_binary",
  "education_level_coarsen",
  "employed_binary",
  "eth_cat",
  "male_binary",
  "not_heterosexual_binary",
  "parent_binary",
  "partner_binary",
  "religion_identification_level",
  "rural_gch_2018_l",
  "sample_frame_opt_in_binary",
  # personality - Big Six
  "agreeableness",
  "conscientiousness",
  "extraversion",
  "honesty_humility",
  "neuroticism",
  "openness",
  # health/lifestyle
  "alcohol_frequency_weekly",
  "alcohol_intensity",
  "hlth_bmi",
  "hlth_disability_binary",
  "hlth_fatigue",
  "kessler_latent_anxiety",
  "kessler_latent_depression",
  "log_hours_children",
  "log_hours_commute",
  "log_hours_exercise",
  "log_hours_housework",
  "log_household_inc",
  "short_form_health",
  "smoker_binary",
  # social/psychological
  "belong",
  "nz_dep2018",
  "nzsei_13_l",
  "political_conservative",
  "rwa",
  "sdo",
  "support"
]
"""

_BASELINE_MINIMAL = """\
# minimal baseline covariates
# core demographics only

vars = [
  "age",
  "male_binary",
  "eth_cat",
  "education_level_coarsen",
  "employed_binary",
  "partner_binary",
  "nz_dep2018"
]
"""

# extended = default + additional psychological measures
_BASELINE_EXTENDED = (
    _BASELINE_DEFAULT.replace(
        "# default baseline covariates\n"
        "# standard set for NZAVS causal inference studies\n",
        "# extended baseline covariates\n"
        "# comprehensive set including additional psychological measures\n",
    ).replace(
        '  "support"\n]',
        '  "support",\n'
        "  # additional measures\n"
        '  "gratitude",\n'
        '  "modesty",\n'
        '  "perfectionism",\n'
        '  "self_esteem",\n'
        '  "vengeful_rumination"\n'
        "]",
    )
)

_OUTCOMES_WELLBEING = """\
# wellbeing outcome variables
# psychological wellbeing measures

vars = [
  "life_satisfaction",
  "pwi",
  "self_esteem",
  "meaning_purpose",
  "gratitude"
]
"""

_OUTCOMES_HEALTH = """\
# health outcome variables
# physical and mental health measures

vars = [
  "short_form_health",
  "kessler_latent_anxiety",
  "kessler_latent_depression",
  "hlth_fatigue",
  "hlth_sleep_hours"
]
"""

BUNDLED_TEMPLATES: tuple[tuple[TemplateId, bytes], ...] = (
    (TemplateId.of(TemplateKind.BASELINE, "default"), _BASELINE_DEFAULT.encode()),
    (TemplateId.of(TemplateKind.BASELINE, "minimal"), _BASELINE_MINIMAL.encode()),
    (TemplateId.of(TemplateKind.BASELINE, "extended"), _BASELINE_EXTENDED.encode()),
    (TemplateId.of(TemplateKind.OUTCOME, "wellbeing"), _OUTCOMES_WELLBEING.encode()),
    (TemplateId.of(TemplateKind.OUTCOME, "health"), _OUTCOMES_HEALTH.encode()),
)
