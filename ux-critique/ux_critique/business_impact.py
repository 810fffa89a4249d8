"""
Business Impact Scoring

Deterministic, table-driven estimates of what fixing an annotation is
worth: conversion uplift, revenue range, user reach, implementation
effort and an ROI score. Same annotation in, same impact out.
"""

import math
from typing import Optional, Sequence

from .log import get_logger
from .models import (
    AccessibilityReach,
    Annotation,
    BusinessImpact,
    ConversionImpact,
    ImplementationEffort,
    RevenueProjection,
)

logger = get_logger("ux_critique.business_impact")

SEVERITY_MULTIPLIERS = {"critical": 3.0, "suggested": 2.0, "enhancement": 1.5}
CATEGORY_WEIGHTS = {"accessibility": 2.5, "conversion": 3.0, "ux": 2.0, "visual": 1.5, "brand": 1.8}

COMPLEXITY_MATRIX = {
    "accessibility": {"critical": "standard", "suggested": "quick-win", "enhancement": "quick-win"},
    "conversion": {"critical": "complex", "suggested": "standard", "enhancement": "quick-win"},
    "ux": {"critical": "complex", "suggested": "standard", "enhancement": "standard"},
    "visual": {"critical": "standard", "suggested": "quick-win", "enhancement": "quick-win"},
    "brand": {"critical": "standard", "suggested": "standard", "enhancement": "quick-win"},
}

EFFORT_DETAILS = {
    "quick-win": ("2-4 hours", ["Frontend developer", "Basic design review"]),
    "standard": ("1-2 days", ["Frontend developer", "UX designer", "Testing"]),
    "complex": (
        "1-2 weeks",
        ["Frontend developer", "Backend developer", "UX designer", "QA testing", "Stakeholder review"],
    ),
}

COMPLEXITY_PENALTY = {"quick-win": 0, "standard": 1, "complex": 3}

# Per category and severity: conversion uplift, monthly revenue (min, max)
CONVERSION_RANGES = {
    "conversion": {"critical": "15-25%", "suggested": "8-15%", "enhancement": "3-8%"},
    "accessibility": {"critical": "5-12%", "suggested": "5-12%", "enhancement": "5-12%"},
    "ux": {"critical": "12-18%", "suggested": "8-12%", "enhancement": "4-6%"},
    "visual": {"critical": "8-10%", "suggested": "5-7%", "enhancement": "2-3%"},
    "brand": {"critical": "10-14%", "suggested": "6-8%", "enhancement": "3-4%"},
}

REVENUE_RANGES = {
    "conversion": {"critical": (5000, 15000), "suggested": (2000, 8000), "enhancement": (500, 3000)},
    "accessibility": {"critical": (3000, 8000), "suggested": (1500, 4000), "enhancement": (500, 2000)},
    "ux": {"critical": (4000, 10000), "suggested": (2000, 6000), "enhancement": (800, 2500)},
    "visual": {"critical": (2000, 5000), "suggested": (1000, 3000), "enhancement": (300, 1200)},
    "brand": {"critical": (3000, 7000), "suggested": (1500, 4000), "enhancement": (500, 1800)},
}

ACCESSIBILITY_REACH = {"critical": "15-20%", "suggested": "8-12%", "enhancement": "3-6%"}

CATEGORY_PROFILES = {
    "conversion": {
        "methodology": "Industry benchmark analysis",
        "reach": "85-95%",
        "compliance": "Improves conversion funnel accessibility",
        "assumptions": [
            "Based on current traffic volume",
            "Assumes consistent user behavior patterns",
            "Market conditions remain stable",
        ],
    },
    "accessibility": {
        "methodology": "WCAG compliance standards",
        "compliance": "Improved accessibility standards",
        "assumptions": [
            "Accessibility improvements reduce bounce rate",
            "Enhanced usability increases conversion",
            "Legal compliance reduces risk",
        ],
    },
    "ux": {
        "methodology": "UX best practices",
        "reach": "90-100%",
        "compliance": "Universal usability improvement",
        "assumptions": [
            "Improved user flow reduces abandonment",
            "Better UX increases customer lifetime value",
            "Enhanced usability drives word-of-mouth growth",
        ],
    },
    "visual": {
        "methodology": "Visual hierarchy and design psychology principles",
        "reach": "100%",
        "compliance": "Visual accessibility enhancement",
        "assumptions": [
            "Improved visual appeal increases engagement",
            "Better design builds trust and credibility",
            "Enhanced aesthetics supports premium positioning",
        ],
    },
    "brand": {
        "methodology": "Brand perception and trust studies",
        "reach": "100%",
        "compliance": "Brand consistency improvement",
        "assumptions": [
            "Stronger brand perception increases customer loyalty",
            "Consistent branding builds trust",
            "Professional appearance supports premium pricing",
        ],
    },
}


class BusinessImpactScorer:
    """
    Attach business-impact estimates to accepted annotations.

    Example:
        scorer = BusinessImpactScorer()
        enriched = scorer.enrich_all(result.annotations)
        top = max(enriched, key=lambda a: a.business_impact.roi_score)
    """

    def score(self, annotation: Annotation) -> BusinessImpact:
        category, severity = annotation.category, annotation.severity

        business_value = self.business_value(category, severity)
        complexity = COMPLEXITY_MATRIX[category][severity]
        roi_score = max(1, min(10, business_value - COMPLEXITY_PENALTY[complexity]))

        conversion = self._conversion_impact(annotation)
        revenue = self._revenue_projection(category, severity)
        reach = self._accessibility_reach(category, severity)
        time_estimate, resources = EFFORT_DETAILS[complexity]

        return BusinessImpact(
            conversion_impact=conversion,
            revenue_projection=revenue,
            accessibility_reach=reach,
            implementation_effort=ImplementationEffort(
                category=complexity,
                time_estimate=time_estimate,
                resources_needed=list(resources),
            ),
            business_value=business_value,
            roi_score=roi_score,
            priority=priority_for(roi_score),
            risk_level=risk_level(category, severity),
            justification=(
                f"This {severity} {category} issue has been identified with an ROI score of {roi_score}/10. "
                f"Expected conversion improvement of {conversion.estimated_increase}. "
                f"Projected monthly revenue impact: {revenue.monthly_increase}. "
                f"This change would benefit {reach.affected_user_percentage} of users."
            ),
        )

    def enrich(self, annotation: Annotation) -> Annotation:
        """Return a new annotation carrying its business impact."""
        return annotation.model_copy(update={"business_impact": self.score(annotation)})

    def enrich_all(self, annotations: Sequence[Annotation]) -> list[Annotation]:
        enriched = [self.enrich(a) for a in annotations]
        logger.debug(
            "Business impact: %d annotations, %d critical priority",
            len(enriched), sum(1 for a in enriched if a.business_impact.priority == "critical")
        )
        return enriched

    @staticmethod
    def business_value(category: str, severity: str) -> int:
        raw = SEVERITY_MULTIPLIERS[severity] * CATEGORY_WEIGHTS[category]
        # Half-up rounding, 4.5 -> 5
        return max(1, min(10, math.floor(raw + 0.5)))

    @staticmethod
    def _conversion_impact(annotation: Annotation) -> ConversionImpact:
        category, severity = annotation.category, annotation.severity
        profile = CATEGORY_PROFILES[category]

        if category == "accessibility":
            confidence = "high"
            methodology = (
                "Research-backed accessibility guidelines"
                if annotation.research_validated else profile["methodology"]
            )
        elif category == "conversion":
            confidence = {"critical": "high", "suggested": "medium"}.get(severity, "low")
            methodology = profile["methodology"]
        else:
            confidence = "medium"
            methodology = profile["methodology"]

        return ConversionImpact(
            estimated_increase=CONVERSION_RANGES[category][severity],
            confidence=confidence,
            methodology=methodology,
        )

    @staticmethod
    def _revenue_projection(category: str, severity: str) -> RevenueProjection:
        low, high = REVENUE_RANGES[category][severity]
        return RevenueProjection(
            monthly_increase=f"${low:,}-{high:,}",
            annual_projection=f"${low * 12:,}-{high * 12:,}",
            assumptions=list(CATEGORY_PROFILES[category]["assumptions"]),
        )

    @staticmethod
    def _accessibility_reach(category: str, severity: str) -> AccessibilityReach:
        profile = CATEGORY_PROFILES[category]
        if category == "accessibility":
            return AccessibilityReach(
                affected_user_percentage=ACCESSIBILITY_REACH[severity],
                compliance_level="WCAG AA compliance" if severity == "critical" else profile["compliance"],
            )
        return AccessibilityReach(
            affected_user_percentage=profile["reach"],
            compliance_level=profile["compliance"],
        )


def priority_for(roi_score: int) -> str:
    if roi_score >= 8:
        return "critical"
    if roi_score >= 5:
        return "important"
    return "enhancement"


def risk_level(category: str, severity: Optional[str]) -> str:
    if severity == "critical" and category == "accessibility":
        return "high"
    if severity == "critical" and category == "conversion":
        return "medium"
    return "low"
