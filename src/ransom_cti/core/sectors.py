"""
Sector classification for ransomware victims.

Victim records rarely carry a usable industry field, so classification runs
an ordered cascade and the first stage that produces a specific sector wins:

1. Source-provided sector/activity, normalized through SECTOR_ALIASES
2. Website TLD markers (TLD_SECTORS)
3. Keywords in the victim name
4. Keywords in the description
5. Keywords in the website string
6. "Other"

All tables are ordered tuples of pairs: iteration order is the precedence.
"""

import logging
import re
import sqlite3
from functools import lru_cache
from typing import Dict, Optional, Pattern, Tuple

from ransom_cti.core import config
from ransom_cti.core.db import load_incidents_page, update_incident_sector

logger = logging.getLogger(__name__)

HEALTHCARE = "healthcare"
PHARMACEUTICALS = "pharmaceuticals"
FINANCE = "finance"
TECHNOLOGY = "technology"
MANUFACTURING = "manufacturing"
RETAIL = "retail"
EDUCATION = "education"
ENERGY = "energy"
GOVERNMENT = "government"
DEFENSE = "defense"
LEGAL = "legal"
CONSTRUCTION = "construction"
REAL_ESTATE = "real_estate"
TRANSPORTATION = "transportation"
TELECOMMUNICATIONS = "telecommunications"
MEDIA = "media"
HOSPITALITY = "hospitality"
AGRICULTURE = "agriculture"
NONPROFIT = "nonprofit"
PROFESSIONAL_SERVICES = "professional_services"
OTHER = "Other"
UNKNOWN = "Unknown"

SENTINEL_SECTORS = frozenset({OTHER, UNKNOWN})

SECTORS: Tuple[str, ...] = (
    HEALTHCARE,
    FINANCE,
    TECHNOLOGY,
    MANUFACTURING,
    RETAIL,
    EDUCATION,
    ENERGY,
    GOVERNMENT,
    LEGAL,
    CONSTRUCTION,
    TRANSPORTATION,
    REAL_ESTATE,
    TELECOMMUNICATIONS,
    HOSPITALITY,
    MEDIA,
    AGRICULTURE,
    NONPROFIT,
    PROFESSIONAL_SERVICES,
    DEFENSE,
    PHARMACEUTICALS,
    OTHER,
    UNKNOWN,
)

# Source-provided sector strings -> normalized sector
SECTOR_ALIASES: Tuple[Tuple[str, str], ...] = (
    # Healthcare
    ("healthcare", HEALTHCARE),
    ("health care", HEALTHCARE),
    ("health", HEALTHCARE),
    ("medical", HEALTHCARE),
    ("hospital", HEALTHCARE),
    ("pharmaceutical", PHARMACEUTICALS),
    ("pharma", PHARMACEUTICALS),
    ("biotech", PHARMACEUTICALS),
    ("biotechnology", PHARMACEUTICALS),
    ("life sciences", PHARMACEUTICALS),
    # Finance
    ("finance", FINANCE),
    ("financial", FINANCE),
    ("financial services", FINANCE),
    ("banking", FINANCE),
    ("bank", FINANCE),
    ("insurance", FINANCE),
    ("investment", FINANCE),
    ("accounting", FINANCE),
    ("fintech", FINANCE),
    # Technology
    ("technology", TECHNOLOGY),
    ("tech", TECHNOLOGY),
    ("it", TECHNOLOGY),
    ("it services", TECHNOLOGY),
    ("information technology", TECHNOLOGY),
    ("software", TECHNOLOGY),
    ("saas", TECHNOLOGY),
    ("cloud", TECHNOLOGY),
    ("cybersecurity", TECHNOLOGY),
    ("data", TECHNOLOGY),
    ("internet", TECHNOLOGY),
    ("electronics", TECHNOLOGY),
    # Manufacturing
    ("manufacturing", MANUFACTURING),
    ("industrial", MANUFACTURING),
    ("automotive", MANUFACTURING),
    ("machinery", MANUFACTURING),
    ("chemicals", MANUFACTURING),
    ("plastics", MANUFACTURING),
    ("metals", MANUFACTURING),
    ("aerospace", MANUFACTURING),
    ("food processing", MANUFACTURING),
    ("consumer goods", MANUFACTURING),
    ("textiles", MANUFACTURING),
    # Retail
    ("retail", RETAIL),
    ("e-commerce", RETAIL),
    ("ecommerce", RETAIL),
    ("consumer", RETAIL),
    ("wholesale", RETAIL),
    ("distribution", RETAIL),
    ("food & beverage", RETAIL),
    ("food and beverage", RETAIL),
    ("supermarket", RETAIL),
    ("grocery", RETAIL),
    # Education
    ("education", EDUCATION),
    ("higher education", EDUCATION),
    ("k-12", EDUCATION),
    ("school", EDUCATION),
    ("university", EDUCATION),
    ("college", EDUCATION),
    ("academic", EDUCATION),
    ("research", EDUCATION),
    # Energy
    ("energy", ENERGY),
    ("oil & gas", ENERGY),
    ("oil and gas", ENERGY),
    ("utilities", ENERGY),
    ("power", ENERGY),
    ("electricity", ENERGY),
    ("renewable", ENERGY),
    ("mining", ENERGY),
    ("natural resources", ENERGY),
    # Government / defense
    ("government", GOVERNMENT),
    ("public sector", GOVERNMENT),
    ("public administration", GOVERNMENT),
    ("federal", GOVERNMENT),
    ("state", GOVERNMENT),
    ("municipal", GOVERNMENT),
    ("local government", GOVERNMENT),
    ("military", DEFENSE),
    ("defense", DEFENSE),
    ("defence", DEFENSE),
    # Legal
    ("legal", LEGAL),
    ("legal services", LEGAL),
    ("law", LEGAL),
    ("law firm", LEGAL),
    # Construction / real estate
    ("construction", CONSTRUCTION),
    ("building", CONSTRUCTION),
    ("engineering", CONSTRUCTION),
    ("architecture", CONSTRUCTION),
    ("infrastructure", CONSTRUCTION),
    ("real estate", REAL_ESTATE),
    ("property", REAL_ESTATE),
    ("housing", REAL_ESTATE),
    # Transportation
    ("transportation", TRANSPORTATION),
    ("transport", TRANSPORTATION),
    ("logistics", TRANSPORTATION),
    ("shipping", TRANSPORTATION),
    ("freight", TRANSPORTATION),
    ("aviation", TRANSPORTATION),
    ("airline", TRANSPORTATION),
    ("maritime", TRANSPORTATION),
    ("trucking", TRANSPORTATION),
    ("rail", TRANSPORTATION),
    # Telecommunications / media
    ("telecommunications", TELECOMMUNICATIONS),
    ("telecom", TELECOMMUNICATIONS),
    ("communications", TELECOMMUNICATIONS),
    ("media", MEDIA),
    ("broadcasting", MEDIA),
    ("publishing", MEDIA),
    ("entertainment", MEDIA),
    ("gaming", MEDIA),
    # Hospitality
    ("hospitality", HOSPITALITY),
    ("hotel", HOSPITALITY),
    ("travel", HOSPITALITY),
    ("tourism", HOSPITALITY),
    ("leisure", HOSPITALITY),
    ("restaurant", HOSPITALITY),
    ("food service", HOSPITALITY),
    # Other sectors
    ("agriculture", AGRICULTURE),
    ("farming", AGRICULTURE),
    ("nonprofit", NONPROFIT),
    ("non-profit", NONPROFIT),
    ("ngo", NONPROFIT),
    ("charity", NONPROFIT),
    ("religious", NONPROFIT),
    ("consulting", PROFESSIONAL_SERVICES),
    ("professional services", PROFESSIONAL_SERVICES),
    ("staffing", PROFESSIONAL_SERVICES),
    ("hr", PROFESSIONAL_SERVICES),
    ("human resources", PROFESSIONAL_SERVICES),
    ("marketing", PROFESSIONAL_SERVICES),
    ("advertising", PROFESSIONAL_SERVICES),
)

_ALIAS_LOOKUP: Dict[str, str] = {}
for _alias, _sector in SECTOR_ALIASES:
    _ALIAS_LOOKUP.setdefault(_alias, _sector)

# Keyword tables, checked in declaration order against names/descriptions/URLs
SECTOR_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (HEALTHCARE, (
        "hospital", "health", "medical", "clinic", "dental", "care", "surgery",
        "patient", "doctor", "physician", "nursing", "hospice", "therapy",
        "diagnostic", "laboratory", "lab", "imaging", "radiology", "oncology",
        "cardiology", "orthopedic", "pediatric", "mental health", "behavioral",
        "rehabilitation", "rehab", "wellness", "healthcare", "healthsystem",
        "medic", "surgical", "ambulance", "emergency", "urgent care",
        "klinik", "krankenhaus", "hopital", "clinica", "ospedale",
    )),
    (PHARMACEUTICALS, (
        "pharma", "pharmaceutical", "biotech", "drug", "medication", "rx",
        "therapeutics", "bioscience", "lifescience", "vaccine", "clinical trial",
    )),
    (FINANCE, (
        "bank", "financial", "finance", "insurance", "credit", "capital",
        "invest", "loan", "wealth", "asset", "mortgage", "securities",
        "trading", "brokerage", "hedge", "fund", "equity", "leasing",
        "accounting", "audit", "tax", "cpa", "payroll", "fintech",
        "banque", "banco", "banca", "versicherung", "assurance",
    )),
    (TECHNOLOGY, (
        "tech", "software", "it", "cyber", "data", "cloud", "digital",
        "computer", "network", "system", "solution", "platform", "app",
        "saas", "hosting", "server", "database", "analytics", "ai",
        "automation", "integration", "development", "programming", "code",
        "semiconductor", "chip", "electronics", "hardware", "device",
        "internet", "web", "online", "ecommerce", "startup", "infotech",
        "infosec", "security", "encrypt", "firewall", "antivirus",
        "informatique", "informatica", "technologie",
    )),
    (MANUFACTURING, (
        "manufacturing", "industrial", "factory", "production", "auto",
        "automotive", "steel", "metal", "plastic", "chemical", "machinery",
        "equipment", "component", "assembly", "fabricat", "tool", "die",
        "precision", "cnc", "aerospace", "defense contractor", "oem",
        "textile", "apparel", "furniture", "packaging", "paper", "wood",
        "glass", "ceramic", "rubber", "polymer", "composite", "alloy",
        "foundry", "forge", "mill", "plant", "works", "industrie",
    )),
    (RETAIL, (
        "retail", "store", "shop", "commerce", "market", "consumer",
        "grocery", "supermarket", "mall", "outlet", "wholesale", "distributor",
        "merchant", "trade", "supply", "vendor", "dealer", "reseller",
        "boutique", "fashion", "clothing", "apparel", "shoes", "jewelry",
        "electronics", "appliance", "furniture", "home goods", "sporting",
        "pet", "toy", "book", "music", "pharmacy", "drugstore", "convenience",
        "tienda", "magasin", "negozio", "laden", "butik",
    )),
    (EDUCATION, (
        "school", "university", "college", "education", "academy", "institute",
        "student", "campus", "learning", "teaching", "academic", "faculty",
        "elementary", "middle", "high school", "k-12", "k12", "kindergarten",
        "preschool", "daycare", "childcare", "montessori", "charter",
        "district", "superintendent", "principal", "dean", "professor",
        "graduate", "undergraduate", "phd", "mba", "vocational", "technical",
        "community college", "junior college", "seminary", "theological",
        "universidad", "universite", "universita", "hochschule", "ecole", "escola",
        "schule", "colegio", "liceo", "gymnasium", "polytechnic",
    )),
    (ENERGY, (
        "energy", "oil", "gas", "petroleum", "power", "utility", "electric",
        "solar", "wind", "nuclear", "hydro", "renewable", "generation",
        "transmission", "distribution", "grid", "fuel", "refinery", "pipeline",
        "drilling", "exploration", "mining", "coal", "natural gas", "lng",
        "biomass", "geothermal", "turbine", "generator", "substation",
        "energie", "energia", "petroleo", "elektrik",
    )),
    (GOVERNMENT, (
        "gov", "government", "city", "county", "municipal", "state", "federal",
        "public", "council", "ministry", "department", "agency", "bureau",
        "commission", "authority", "administration", "civic", "town", "village",
        "borough", "parish", "district", "region", "province", "territory",
        "senate", "congress", "parliament", "legislature", "judiciary", "court",
        "police", "fire", "emergency", "sheriff", "marshal", "corrections",
        "prison", "jail", "probation", "parole", "dmv", "irs", "fbi", "cia",
        "ayuntamiento", "mairie", "comune", "gemeente", "kommune",
        "regierung", "gobierno", "gouvernement", "amministrazione",
    )),
    (DEFENSE, (
        "defense", "defence", "military", "army", "navy", "air force",
        "marine", "coast guard", "national guard", "veteran", "armed forces",
        "pentagon", "nato", "contractor", "weapon", "munition", "arsenal",
        "tactical", "strategic", "intelligence", "surveillance", "reconnaissance",
    )),
    (LEGAL, (
        "law", "legal", "attorney", "lawyer", "solicitor", "barrister",
        "court", "judge", "paralegal", "litigation", "advocate", "counsel",
        "notary", "patent", "trademark", "intellectual property", "ip",
        "llp", "esquire", "esq", "jd", "juris", "juridical",
        "abogado", "avocat", "avvocato", "rechtsanwalt", "advocaat",
    )),
    (CONSTRUCTION, (
        "construction", "building", "contractor", "architect", "engineering",
        "civil", "structural", "mechanical", "electrical", "plumbing", "hvac",
        "roofing", "paving", "concrete", "masonry", "carpentry", "framing",
        "demolition", "excavation", "grading", "surveying", "development",
        "builder", "homebuilder", "general contractor", "subcontractor",
        "renovation", "remodel", "restoration", "maintenance", "facility",
        "bau", "construccion", "edilizia", "batiment",
    )),
    (REAL_ESTATE, (
        "real estate", "realty", "property", "properties", "housing", "mortgage",
        "apartment", "condo", "residential", "commercial", "industrial",
        "broker", "agent", "realtor", "landlord", "tenant", "lease",
        "immobilien", "inmobiliaria", "immobilier", "imobiliaria",
    )),
    (TRANSPORTATION, (
        "transport", "logistics", "shipping", "freight", "cargo", "carrier",
        "airline", "aviation", "airport", "rail", "railroad", "railway",
        "trucking", "truck", "fleet", "delivery", "courier", "express",
        "maritime", "marine", "port", "harbor", "vessel", "ship", "boat",
        "bus", "transit", "metro", "subway", "taxi", "rideshare", "uber", "lyft",
        "warehouse", "distribution", "fulfillment", "3pl", "supply chain",
        "transporte", "logistik", "spedition", "trasporti",
    )),
    (TELECOMMUNICATIONS, (
        "telecom", "telecommunication", "mobile", "wireless", "cellular",
        "broadband", "internet service", "isp", "fiber", "cable", "satellite",
        "phone", "voip", "network operator", "carrier", "5g", "4g", "lte",
        "telefon", "telekommunikation", "telecomunicaciones",
    )),
    (MEDIA, (
        "media", "broadcast", "television", "tv", "radio", "news", "press",
        "publish", "magazine", "newspaper", "journal", "print", "digital media",
        "entertainment", "film", "movie", "studio", "production", "streaming",
        "music", "record", "gaming", "game", "esports", "advertising", "marketing",
        "medien", "medios", "editore", "verlag",
    )),
    (HOSPITALITY, (
        "hotel", "resort", "motel", "inn", "lodge", "hospitality", "accommodation",
        "restaurant", "cafe", "bar", "pub", "dining", "catering", "food service",
        "travel", "tourism", "vacation", "cruise", "casino", "entertainment",
        "event", "conference", "convention", "banquet", "wedding",
        "hoteles", "ristorante", "gastronomie", "restaurante",
    )),
    (AGRICULTURE, (
        "farm", "agriculture", "agricultural", "crop", "livestock", "dairy",
        "poultry", "cattle", "grain", "seed", "fertilizer", "pesticide",
        "irrigation", "harvest", "vineyard", "winery", "orchard", "greenhouse",
        "aquaculture", "fishery", "forestry", "timber", "lumber",
        "agri", "agro", "landwirtschaft", "agricultura",
    )),
    (NONPROFIT, (
        "nonprofit", "non-profit", "ngo", "charity", "foundation", "association",
        "society", "federation", "alliance", "coalition", "institute",
        "church", "temple", "mosque", "synagogue", "religious", "faith",
        "humanitarian", "relief", "aid", "volunteer", "donation",
        "museum", "library", "archive", "cultural", "arts", "theater", "theatre",
        "zoo", "aquarium", "botanical", "conservation", "environmental",
    )),
    (PROFESSIONAL_SERVICES, (
        "consulting", "consultant", "advisory", "professional", "services",
        "staffing", "recruiting", "headhunter", "hr", "human resources",
        "management", "strategy", "operations", "transformation",
        "marketing", "advertising", "pr", "public relations", "communications",
        "design", "creative", "branding", "agency",
        "beratung", "consulenza", "conseil", "asesoria",
    )),
)

# Website markers; None entries are known but too generic to resolve
TLD_SECTORS: Tuple[Tuple[str, Optional[str]], ...] = (
    (".edu", EDUCATION),
    (".edu.", EDUCATION),
    (".ac.", EDUCATION),
    (".sch.", EDUCATION),
    (".school", EDUCATION),
    (".university", EDUCATION),
    (".college", EDUCATION),
    (".gov", GOVERNMENT),
    (".gov.", GOVERNMENT),
    (".gob.", GOVERNMENT),
    (".gouv.", GOVERNMENT),
    (".govt.", GOVERNMENT),
    (".mil", DEFENSE),
    (".mil.", DEFENSE),
    (".org", None),
    (".health", HEALTHCARE),
    (".hospital", HEALTHCARE),
    (".clinic", HEALTHCARE),
    (".med", HEALTHCARE),
    (".law", LEGAL),
    (".legal", LEGAL),
    (".bank", FINANCE),
    (".insurance", FINANCE),
    (".church", NONPROFIT),
    (".charity", NONPROFIT),
    (".museum", NONPROFIT),
    (".coop", AGRICULTURE),
)


def is_sentinel(sector: Optional[str]) -> bool:
    """True for values that mean "not yet classified"."""
    return not sector or sector in SENTINEL_SECTORS


@lru_cache(maxsize=None)
def _short_keyword_pattern(keyword: str) -> Pattern:
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def normalize_api_sector(value: Optional[str]) -> Optional[str]:
    """Map a source-provided sector/activity string onto a normalized sector."""
    if not value or not isinstance(value, str):
        return None

    lower = value.strip().lower()
    if not lower:
        return None

    if lower in _ALIAS_LOOKUP:
        return _ALIAS_LOOKUP[lower]

    for alias, sector in SECTOR_ALIASES:
        if alias in lower or lower in alias:
            return sector

    if lower in SECTORS:
        return lower

    return None


def detect_from_tld(website: Optional[str]) -> Optional[str]:
    if not website:
        return None

    lower = website.lower()
    for marker, sector in TLD_SECTORS:
        if sector and marker in lower:
            return sector
    return None


def detect_from_keywords(text: Optional[str]) -> Optional[str]:
    """
    Return the first sector whose keyword table hits the text.

    Keywords of three characters or fewer must match as whole words so that
    e.g. "it" does not fire inside "Smith".
    """
    if not text:
        return None

    lower = text.lower()
    for sector, keywords in SECTOR_KEYWORDS:
        for keyword in keywords:
            if len(keyword) <= 3:
                if _short_keyword_pattern(keyword).search(lower):
                    return sector
            elif keyword in lower:
                return sector
    return None


def classify_sector(
    victim_name: Optional[str] = None,
    website: Optional[str] = None,
    description: Optional[str] = None,
    api_sector: Optional[str] = None,
    activity: Optional[str] = None,
) -> str:
    """
    Classify a victim into a normalized sector.

    Never raises: every argument may be missing. Returns "Other" when no
    stage of the cascade resolves.
    """
    normalized = normalize_api_sector(api_sector or activity)
    if normalized and not is_sentinel(normalized):
        return normalized

    for stage in (
        lambda: detect_from_tld(website),
        lambda: detect_from_keywords(victim_name),
        lambda: detect_from_keywords(description),
        lambda: detect_from_keywords(website),
    ):
        sector = stage()
        if sector:
            return sector

    return OTHER


def _classification_inputs(incident) -> Dict[str, Optional[str]]:
    raw = incident.raw_data or {}
    return {
        "victim_name": incident.victim_name,
        "website": incident.victim_website or raw.get("website"),
        "description": raw.get("description"),
        "api_sector": raw.get("activity") or raw.get("sector") or raw.get("industry"),
        "activity": raw.get("activity"),
    }


def should_replace_sector(current: Optional[str], proposed: str) -> bool:
    """A stored sector is only replaced by a different, specific sector."""
    return proposed != current and not is_sentinel(proposed)


def reclassify_incidents(
    conn: sqlite3.Connection,
    batch_size: int = config.RECLASSIFY_BATCH_SIZE,
) -> Dict[str, int]:
    """
    Re-run classification over every stored incident.

    Upgrades only: a stored sector is never replaced by "Other"/"Unknown",
    so a re-run cannot regress earlier results.
    """
    logger.info("Starting incident reclassification...")

    offset = 0
    updated = 0
    unchanged = 0
    failed = 0
    total = 0

    while True:
        incidents = load_incidents_page(conn, offset=offset, limit=batch_size)
        if not incidents:
            break

        total += len(incidents)
        for incident in incidents:
            proposed = classify_sector(**_classification_inputs(incident))
            if not should_replace_sector(incident.victim_sector, proposed):
                unchanged += 1
                continue
            try:
                update_incident_sector(conn, incident.id, proposed)
                updated += 1
            except sqlite3.Error as e:
                failed += 1
                logger.warning(f"Could not reclassify incident {incident.id}: {e}")

        logger.info(f"  Processed {total} incidents ({updated} updated, {unchanged} unchanged)")
        offset += batch_size

    logger.info(
        f"Reclassification complete: {updated} updated, {unchanged} unchanged "
        f"out of {total} total"
    )
    return {"updated": updated, "unchanged": unchanged, "failed": failed, "total": total}
