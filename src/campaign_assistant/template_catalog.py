from __future__ import annotations

from dataclasses import dataclass

PRO_PRICE_THRESHOLD_USD = 39


@dataclass(frozen=True)
class TemplateDefinition:
    id: str
    name: str
    theme: str
    domain: str
    description: str
    audience: str
    tone: str
    price_usd: int | None = None

    @property
    def access_tier(self) -> str:
        if self.price_usd is not None and self.price_usd >= PRO_PRICE_THRESHOLD_USD:
            return "pro"
        return "free"


TEMPLATE_CATALOG: tuple[TemplateDefinition, ...] = (
    TemplateDefinition(
        id="sushi-omakase-signature",
        name="Sushi Omakase Signature",
        theme="Sushi",
        domain="Food & Beverage",
        description="Clean Japanese editorial design with omakase storytelling, premium pairings, and reservation urgency.",
        audience="Urban gourmets",
        tone="Refined + calm",
        price_usd=29,
    ),
    TemplateDefinition(
        id="burger-street-social",
        name="Burger Street Social",
        theme="Burger place",
        domain="Food & Beverage",
        description="Bold conversion-focused layout with social proof, combo offer blocks, and high-energy visuals.",
        audience="Lunch + dinner crowd",
        tone="Bold + playful",
        price_usd=19,
    ),
    TemplateDefinition(
        id="vegan-garden-journal",
        name="Vegan Garden Journal",
        theme="Vegan",
        domain="Food & Beverage",
        description="Fresh botanical aesthetic with nutrient-forward copy, colorful bowls, and wellness-centered messaging.",
        audience="Health-focused subscribers",
        tone="Fresh + uplifting",
        price_usd=24,
    ),
    TemplateDefinition(
        id="fine-cuisine-grand-soiree",
        name="Fine Cuisine Grand Soiree",
        theme="Fine cuisine",
        domain="Food & Beverage",
        description="Luxury editorial template with chef narrative, plated-course highlights, and elevated visual hierarchy.",
        audience="VIP and special occasions",
        tone="Elegant + exclusive",
        price_usd=39,
    ),
    TemplateDefinition(
        id="saas-growth-launchpad",
        name="SaaS Growth Launchpad",
        theme="Product update",
        domain="SaaS",
        description="Feature launch template with activation copy, onboarding highlights, and conversion-first CTA blocks.",
        audience="Trial users and admins",
        tone="Clean + strategic",
        price_usd=34,
    ),
    TemplateDefinition(
        id="real-estate-open-house",
        name="Real Estate Open House",
        theme="Listing showcase",
        domain="Real Estate",
        description="Property-first visual template with listing highlights, social proof, and booking slots.",
        audience="Buyers and investors",
        tone="Premium + trustworthy",
        price_usd=49,
    ),
    TemplateDefinition(
        id="fitness-membership-push",
        name="Fitness Membership Push",
        theme="Gym membership",
        domain="Fitness",
        description="High-energy campaign template for trials, class schedules, and member success stories.",
        audience="Leads and active members",
        tone="Energetic + motivating",
        price_usd=22,
    ),
    TemplateDefinition(
        id="travel-boutique-escape",
        name="Travel Boutique Escape",
        theme="Destination offer",
        domain="Travel",
        description="Editorial travel newsletter for curated escapes, seasonal offers, and concierge-style booking.",
        audience="Luxury travelers",
        tone="Aspirational + warm",
        price_usd=44,
    ),
    TemplateDefinition(
        id="clinic-care-update",
        name="Clinic Care Update",
        theme="Healthcare reminder",
        domain="Healthcare",
        description="Patient-first layout for appointment reminders, preventive care, and trust-focused messaging.",
        audience="Patients and families",
        tone="Clear + caring",
    ),
    TemplateDefinition(
        id="course-enrollment-drive",
        name="Course Enrollment Drive",
        theme="Education admissions",
        domain="Education",
        description="Structured course newsletter with curriculum highlights, deadlines, and educator credentials.",
        audience="Students and parents",
        tone="Helpful + confident",
        price_usd=27,
    ),
    TemplateDefinition(
        id="fashion-drop-editorial",
        name="Fashion Drop Editorial",
        theme="E-commerce launch",
        domain="E-commerce",
        description="Product drop template with lookbook feel, urgency cues, and bundle merchandising sections.",
        audience="Shoppers and VIP list",
        tone="Modern + bold",
        price_usd=31,
    ),
    TemplateDefinition(
        id="wellness-spa-exclusive",
        name="Wellness Spa Exclusive",
        theme="Beauty and wellness",
        domain="Wellness",
        description="Calm spa campaign for ritual bundles, seasonal treatments, and loyalty offers.",
        audience="Returning customers",
        tone="Serene + premium",
        price_usd=26,
    ),
)

_BY_ID = {template.id: template for template in TEMPLATE_CATALOG}


def find_template(template_id: str | None) -> TemplateDefinition | None:
    if not template_id:
        return None
    return _BY_ID.get(template_id)


def find_template_in_text(text: str) -> TemplateDefinition | None:
    lowered = text.lower()
    for template in TEMPLATE_CATALOG:
        if template.id in lowered:
            return template
    return None
