"""
Keyword heuristics for dream classification, consultation risk assessment
and crisis phrase detection.

All matching is lower-cased substring containment, so a keyword embedded in
a longer word still counts ("mati" matches "kematian").
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Sequence

from app.db.models import DreamClassification, RiskLevel


# ============= KEYWORD LISTS =============

DREAM_SENSITIVE_KEYWORDS = (
    # Spiritual/religious concerns
    "jin", "sihir", "santet", "guna-guna", "kesurupan", "diganggu",
    "makhluk halus", "hantu", "setan", "iblis",
    # Psychological concerns
    "bunuh diri", "mati", "kematian", "mayat", "kubur", "darah", "luka",
    "terluka", "menyakiti", "disakiti", "takut", "ketakutan", "teror",
    "menakutkan",
    # Trauma indicators
    "diperkosa", "dilecehkan", "kekerasan", "dipukul", "dianiaya", "trauma",
    "mengerikan",
)

DREAM_EMOTIONAL_KEYWORDS = (
    "sedih", "menangis", "kecewa", "marah", "kesal", "cemas", "khawatir",
    "gelisah", "bingung", "senang", "gembira", "bahagia", "tertawa", "rindu",
    "kangen", "kehilangan",
)

STRESSFUL_EMOTIONAL_CONDITIONS = frozenset({"sad", "anxious", "angry"})

SUICIDE_CRITICAL_KEYWORDS = (
    "bunuh diri", "ingin mati", "mengakhiri hidup", "tidak ingin hidup",
    "lebih baik mati", "mau mati", "pengen mati", "suicide",
)

SUICIDE_MODERATE_KEYWORDS = (
    "putus asa", "tidak ada harapan", "tidak berguna", "beban", "menyerah",
    "capek hidup", "lelah hidup",
)

PSYCHOSIS_KEYWORDS = (
    "mendengar suara", "suara-suara", "bisikan", "ada yang berbicara",
    "melihat hal", "penglihatan", "halusinasi", "diawasi", "diikuti",
    "diintai", "konspirasi", "kekuatan khusus", "dipilih", "misi khusus",
    "tidak nyata", "realitas berbeda",
)

TRAUMA_KEYWORDS = (
    "diperkosa", "perkosaan", "dilecehkan", "pelecehan seksual", "kekerasan",
    "dipukul", "dianiaya", "disiksa", "trauma", "ptsd", "flashback",
    "mimpi buruk terus", "tidak bisa tidur", "ketakutan terus", "panik",
)

DISSOCIATION_KEYWORDS = (
    "tidak ingat", "kehilangan waktu", "blackout", "seperti orang lain",
    "bukan diri sendiri", "kepribadian berbeda", "keluar dari tubuh",
    "melihat diri sendiri", "tidak sadar", "hilang kesadaran",
)

DELUSION_KEYWORDS = (
    "yakin pasti", "saya tahu pasti", "ini pasti", "disihir", "diguna-guna",
    "disantet", "dikutuk", "jin menguasai", "kerasukan", "dirasuki",
    "semua orang", "mereka semua", "konspirasi",
)


# ============= LOOKUP TABLES =============

DREAM_REASONING: Dict[DreamClassification, str] = {
    DreamClassification.NEEDS_CONSULTATION: "Mimpi mengandung indikasi yang perlu didampingi lebih lanjut",
    DreamClassification.EMOTIONAL: "Mimpi kemungkinan terkait kondisi emosional",
    DreamClassification.SENSITIVE_INDICATION: "Mimpi mungkin perlu perhatian lebih lanjut",
    DreamClassification.KHAYALI_NAFSANI: "Mimpi kemungkinan bersifat khayali/nafsani biasa",
}

DREAM_SUGGESTED_ACTIONS: Dict[DreamClassification, dict] = {
    DreamClassification.NEEDS_CONSULTATION: {
        "action": "consult",
        "title": "Sebaiknya Didampingi",
        "message": "Mimpi ini sebaiknya didiskusikan dengan pendamping untuk klarifikasi lebih lanjut.",
        "suggestions": [
            "Ajukan pendampingan untuk diskusi lebih lanjut",
            "Jaga ibadah rutin dan doa perlindungan",
            "Hindari memikirkan mimpi secara berlebihan",
        ],
    },
    DreamClassification.SENSITIVE_INDICATION: {
        "action": "monitor",
        "title": "Perhatikan dengan Tenang",
        "message": "Mimpi ini mungkin terkait kondisi tertentu. Jika berulang atau mengganggu, pertimbangkan untuk berkonsultasi.",
        "suggestions": [
            "Catat jika mimpi serupa berulang",
            "Jaga kesehatan fisik dan mental",
            "Perbanyak dzikir dan doa",
            "Pertimbangkan konsultasi jika terus mengganggu",
        ],
    },
    DreamClassification.EMOTIONAL: {
        "action": "self_care",
        "title": "Jaga Kesehatan Emosional",
        "message": "Mimpi ini kemungkinan terkait kondisi emosional. Fokus pada perawatan diri dan ketenangan.",
        "suggestions": [
            "Istirahat yang cukup",
            "Kelola stres dengan baik",
            "Lakukan aktivitas yang menenangkan",
            "Berbagi dengan orang terpercaya jika perlu",
        ],
    },
    DreamClassification.KHAYALI_NAFSANI: {
        "action": "ignore",
        "title": "Tidak Perlu Dipikirkan",
        "message": "Mimpi ini kemungkinan bersifat biasa (khayali/nafsani). Tidak perlu diinterpretasikan secara khusus.",
        "suggestions": [
            "Fokus pada ibadah dan aktivitas positif",
            "Tidak perlu mencari makna khusus",
            "Jaga pola tidur yang sehat",
        ],
    },
}

RECOMMENDED_ACTIONS: Dict[RiskLevel, dict] = {
    RiskLevel.CRITICAL: {
        "priority": "immediate",
        "actions": [
            "Eskalasi ke admin/supervisor segera",
            "Pertimbangkan rujukan ke profesional kesehatan mental",
            "Berikan informasi hotline krisis",
            "Pantau secara intensif",
        ],
        "message": "Kasus ini memerlukan perhatian segera dan mungkin memerlukan rujukan profesional.",
    },
    RiskLevel.HIGH: {
        "priority": "urgent",
        "actions": [
            "Prioritaskan penanganan",
            "Lakukan asesmen lebih mendalam",
            "Pertimbangkan rujukan jika diperlukan",
            "Pantau perkembangan",
        ],
        "message": "Kasus ini memerlukan perhatian khusus dan penanganan yang hati-hati.",
    },
    RiskLevel.MEDIUM: {
        "priority": "normal",
        "actions": [
            "Lakukan pendampingan dengan perhatian",
            "Gali lebih dalam saat konsultasi",
            "Pantau perkembangan",
        ],
        "message": "Kasus ini memerlukan pendampingan dengan perhatian khusus.",
    },
    RiskLevel.LOW: {
        "priority": "routine",
        "actions": [
            "Lakukan pendampingan standar",
            "Berikan edukasi dan dukungan",
        ],
        "message": "Kasus ini dapat ditangani dengan pendampingan standar.",
    },
}


# ============= RESULT TYPES =============

@dataclass
class DreamClassificationResult:
    classification: DreamClassification
    confidence: float
    reasoning: str
    suggested_actions: dict

    def to_dict(self) -> dict:
        data = asdict(self)
        data["classification"] = self.classification.value
        return data


@dataclass
class RiskAssessment:
    risk_level: RiskLevel
    risk_flags: List[str] = field(default_factory=list)
    requires_escalation: bool = False
    risk_score: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return data


@dataclass
class CrisisDetection:
    detected_keywords: List[str]
    severity: Optional[RiskLevel]

    @property
    def triggered(self) -> bool:
        return bool(self.detected_keywords)


# ============= MATCHING =============

def count_matches(content: str, keywords: Sequence[str]) -> int:
    """Number of distinct keywords contained in `content` (already lower-cased)."""
    return sum(1 for keyword in dict.fromkeys(keywords) if keyword in content)


def _sensitive_score(content: str) -> float:
    return min(count_matches(content, DREAM_SENSITIVE_KEYWORDS) / 3, 1.0)


def _emotional_score(content: str, context: dict) -> float:
    score = min(count_matches(content, DREAM_EMOTIONAL_KEYWORDS) / 4, 0.7)
    if context.get("emotional_condition") in STRESSFUL_EMOTIONAL_CONDITIONS:
        score += 0.2
    return min(score, 1.0)


def _dream_result(classification: DreamClassification, confidence: float) -> DreamClassificationResult:
    return DreamClassificationResult(
        classification=classification,
        confidence=confidence,
        reasoning=DREAM_REASONING[classification],
        suggested_actions=DREAM_SUGGESTED_ACTIONS[classification],
    )


def classify_dream_content(content: str, context: Optional[dict] = None) -> DreamClassificationResult:
    """
    Classify a dream narrative.

    Sensitive indicators are checked first; a strong match always wins over
    emotional indicators, a moderate one only when the dream is not clearly
    emotional.
    """
    content = (content or "").lower()
    context = context or {}

    sensitive = _sensitive_score(content)
    if sensitive > 0.7:
        return _dream_result(DreamClassification.NEEDS_CONSULTATION, sensitive)

    emotional = _emotional_score(content, context)
    if emotional > 0.6:
        return _dream_result(DreamClassification.EMOTIONAL, emotional)

    if sensitive > 0.4:
        return _dream_result(DreamClassification.SENSITIVE_INDICATION, sensitive)

    return _dream_result(DreamClassification.KHAYALI_NAFSANI, 0.8)


def suggested_actions_for(classification: DreamClassification) -> dict:
    return DREAM_SUGGESTED_ACTIONS[DreamClassification(classification)]


# ============= CONSULTATION RISK =============

def _suicide_score(content: str) -> float:
    if count_matches(content, SUICIDE_CRITICAL_KEYWORDS) > 0:
        return 1.0
    return min(count_matches(content, SUICIDE_MODERATE_KEYWORDS) * 0.3, 0.8)


# (flag, weight, scorer) in evaluation order
RISK_FAMILIES = (
    ("suicide_ideation", 10, _suicide_score),
    ("psychosis_indication", 8, lambda c: min(count_matches(c, PSYCHOSIS_KEYWORDS) * 0.25, 1.0)),
    ("severe_trauma", 7, lambda c: min(count_matches(c, TRAUMA_KEYWORDS) * 0.3, 1.0)),
    ("dissociation", 6, lambda c: min(count_matches(c, DISSOCIATION_KEYWORDS) * 0.3, 1.0)),
    ("delusion", 7, lambda c: min(count_matches(c, DELUSION_KEYWORDS) * 0.25, 1.0)),
)


def assess_consultation_risk(content: str) -> RiskAssessment:
    """
    Assess a consultation narrative across five indicator families.

    The overall score is the mean of the weighted scores of the families that
    triggered; families with no match do not dilute it.
    """
    content = (content or "").lower()
    flags: List[str] = []
    weighted: List[float] = []
    suicide = 0.0

    for flag, weight, scorer in RISK_FAMILIES:
        score = scorer(content)
        if flag == "suicide_ideation":
            suicide = score
        if score > 0:
            flags.append(flag)
            weighted.append(score * weight)

    total = sum(weighted) / len(weighted) if weighted else 0.0

    if total >= 8 or suicide > 0.7:
        level = RiskLevel.CRITICAL
    elif total >= 6:
        level = RiskLevel.HIGH
    elif total >= 3:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return RiskAssessment(
        risk_level=level,
        risk_flags=flags,
        requires_escalation=level in (RiskLevel.CRITICAL, RiskLevel.HIGH),
        risk_score=round(total, 2),
    )


def recommended_actions(risk_level: RiskLevel) -> dict:
    return RECOMMENDED_ACTIONS[RiskLevel(risk_level)]


# ============= CRISIS PHRASES =============

def detect_crisis_keywords(text: str, keywords: Sequence[str]) -> CrisisDetection:
    """Match configured crisis phrases; severity grows with the number of hits."""
    text_lower = (text or "").lower()
    detected = [k for k in dict.fromkeys(keywords) if k.lower() in text_lower]

    if not detected:
        return CrisisDetection(detected_keywords=[], severity=None)
    if len(detected) >= 3:
        severity = RiskLevel.CRITICAL
    elif len(detected) == 2:
        severity = RiskLevel.HIGH
    else:
        severity = RiskLevel.MEDIUM
    return CrisisDetection(detected_keywords=detected, severity=severity)
