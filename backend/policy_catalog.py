"""
Policy Catalog - Manages policy categories and their weights
Think of this like the rulebook the models are asked to grade against.
"""

import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Category key added by content-origin (AI-generated) detection
AI_GENERATED_CATEGORY = "AI_GENERATED_CONTENT"

# Policy taxonomy, grouped the way the community guidelines group them.
# Flattened keys are GROUP_SUBKEY, e.g. CONTENT_SAFETY_VIOLENCE.
DEFAULT_POLICY_GROUPS = {
    "CONTENT_SAFETY": {
        "VIOLENCE": "Violence & Graphic Content",
        "DANGEROUS_ACTS": "Dangerous Acts & Challenges",
        "HARMFUL_CONTENT": "Harmful or Dangerous Content",
        "CHILD_SAFETY": "Child Safety",
    },
    "COMMUNITY_STANDARDS": {
        "HARASSMENT": "Harassment & Cyberbullying",
        "HATE_SPEECH": "Hate Speech",
        "SPAM": "Spam, Deceptive Practices & Scams",
        "MISINFORMATION": "Misinformation",
    },
    "ADVERTISER_FRIENDLY": {
        "SEXUAL_CONTENT": "Sexual Content",
        "PROFANITY": "Profanity & Inappropriate Language",
        "CONTROVERSIAL": "Controversial or Sensitive Topics",
        "BRAND_SAFETY": "Brand Safety Issues",
    },
    "LEGAL_COMPLIANCE": {
        "COPYRIGHT": "Copyright & Intellectual Property",
        "PRIVACY": "Privacy & Personal Information",
        "TRADEMARK": "Trademark Violations",
        "LEGAL_REQUESTS": "Legal Requests & Compliance",
    },
    "MONETIZATION": {
        "AD_POLICIES": "Ad-Friendly Content Guidelines",
        "SPONSORED_CONTENT": "Sponsored Content Disclosure",
        "MONETIZATION_ELIGIBILITY": "Monetization Eligibility",
    },
}

# High-impact categories 2.0, legal/monetization-sensitive 1.5, everything else 1.0
DEFAULT_CATEGORY_WEIGHTS = {
    "CONTENT_SAFETY_VIOLENCE": 2.0,
    "CONTENT_SAFETY_HARMFUL_CONTENT": 2.0,
    "COMMUNITY_STANDARDS_HATE_SPEECH": 2.0,
    "CONTENT_SAFETY_CHILD_SAFETY": 2.0,
    "COMMUNITY_STANDARDS_HARASSMENT": 2.0,

    "CONTENT_SAFETY_DANGEROUS_ACTS": 1.5,
    "ADVERTISER_FRIENDLY_SEXUAL_CONTENT": 1.5,
    "LEGAL_COMPLIANCE_PRIVACY": 1.5,
    "MONETIZATION_MONETIZATION_ELIGIBILITY": 1.5,

    "ADVERTISER_FRIENDLY_PROFANITY": 1.0,
    "ADVERTISER_FRIENDLY_CONTROVERSIAL": 1.0,
    "ADVERTISER_FRIENDLY_BRAND_SAFETY": 1.0,
    "COMMUNITY_STANDARDS_SPAM": 1.0,
    "COMMUNITY_STANDARDS_MISINFORMATION": 1.0,
    "LEGAL_COMPLIANCE_COPYRIGHT": 1.0,
    "LEGAL_COMPLIANCE_TRADEMARK": 1.0,
    "LEGAL_COMPLIANCE_LEGAL_REQUESTS": 1.0,
    "MONETIZATION_AD_POLICIES": 1.0,
    "MONETIZATION_SPONSORED_CONTENT": 1.0,
}

DEFAULT_WEIGHT = 1.0


class PolicyCatalog:
    """
    Holds the policy categories the pipeline scores against.

    The catalog is loaded from `<db_path>/categories.json` when that file
    exists, otherwise the built-in taxonomy is used. The JSON file has the
    same shape as DEFAULT_POLICY_GROUPS, plus an optional top-level
    "weights" object.
    """

    def __init__(self, db_path: Optional[str] = None, weights: Optional[dict[str, float]] = None):
        self.db_path = Path(db_path) if db_path else None
        self.groups: dict[str, dict[str, str]] = {}
        self.weights: dict[str, float] = dict(DEFAULT_CATEGORY_WEIGHTS)

        self._load_catalog()

        # Explicit overrides (config / env) win over file and defaults
        if weights:
            self.weights.update(weights)

    def _load_catalog(self) -> None:
        """Load categories from JSON if present, else fall back to defaults"""
        categories_file = self.db_path / "categories.json" if self.db_path else None

        if categories_file and categories_file.exists():
            try:
                with open(categories_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                file_weights = data.pop("weights", {}) or {}
                self.groups = {
                    str(group): {str(k): str(v) for k, v in subs.items()}
                    for group, subs in data.items()
                    if isinstance(subs, dict)
                }
                self.weights.update({str(k): float(v) for k, v in file_weights.items()})
                logger.info(f"Loaded {len(self.category_keys())} policy categories from {categories_file}")
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Error loading {categories_file}: {e}")
                self.groups = {}

        if not self.groups:
            self.groups = {group: dict(subs) for group, subs in DEFAULT_POLICY_GROUPS.items()}

    def categories(self) -> dict[str, str]:
        """Flattened {KEY: display name} mapping, in taxonomy order"""
        flat = {}
        for group, subs in self.groups.items():
            for sub_key, name in subs.items():
                flat[f"{group}_{sub_key}"] = name
        return flat

    def category_keys(self) -> list[str]:
        return list(self.categories().keys())

    def get_category_name(self, category_key: str) -> str:
        """Get display name for a category"""
        if category_key == AI_GENERATED_CATEGORY:
            return "AI-Generated Content"
        return self.categories().get(category_key, category_key.replace("_", " ").title())

    def get_weight(self, category_key: str) -> float:
        return self.weights.get(category_key, DEFAULT_WEIGHT)
