"""
Domain Pattern Catalog & Matcher.

Scores a free-text app idea against a fixed catalog of industry templates and
picks the single best one, or none. A specialized template swaps the generic
{title, description, status} table for columns that fit the vertical.

Design principles:
- Catalog is immutable and loaded once
- Matching is a pure function of (idea, hint): no randomness, no network
- The threshold is strict so generic ideas stay generic
"""

import json
import os
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Sequence

from matura.artifacts import ProjectSchema, SchemaColumn
from matura.logging_utils import get_logger
from matura.text import jaccard

logger = get_logger(__name__)

MATCH_THRESHOLD = 0.70

# Score weights
INDUSTRY_WEIGHT = 0.50
USE_CASE_WEIGHT = 0.20
FEATURE_WEIGHT = 0.15
DENSITY_WEIGHT = 0.10
BASELINE_WEIGHT = 0.05

# Scores are compared at this precision so 0.5 + 0.15 + 0.01 + 0.04 is 0.70
SCORE_PRECISION = 6


INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "healthcare": ("医療", "病院", "クリニック", "薬局", "患者", "診療", "予約", "健康"),
    "education": ("学校", "教育", "学習", "授業", "学生", "先生", "eラーニング", "LMS"),
    "finance": ("金融", "投資", "経費", "家計簿", "予算", "資産", "ポートフォリオ", "銀行"),
    "hospitality": ("ホテル", "レストラン", "予約", "宿泊", "料理", "接客", "旅館", "POS"),
    "logistics": ("配送", "物流", "倉庫", "在庫", "トラッキング", "運送", "配達"),
    "real-estate": ("不動産", "物件", "賃貸", "売買", "管理", "マンション", "土地"),
    "ecommerce": ("ECサイト", "ネットショップ", "通販", "オンラインストア", "商品", "決済"),
}


@dataclass(frozen=True)
class DomainPattern:
    """A specialized application template for one industry and use case."""
    id: str
    name: str
    industry: str
    use_case: str
    key_features: tuple[str, ...]
    schema_columns: tuple[SchemaColumn, ...]
    table_name: str
    baseline_quality: float = 8
    scoring_keywords: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not 0 <= self.baseline_quality <= 10:
            raise ValueError(f"{self.id}: baseline_quality must be within 0..10")
        if not self.scoring_keywords:
            object.__setattr__(self, "scoring_keywords", INDUSTRY_KEYWORDS.get(self.industry, ()))

    def schema(self) -> ProjectSchema:
        return ProjectSchema(
            table_name=self.table_name,
            columns=list(self.schema_columns),
            pattern_id=self.id,
        )

    @classmethod
    def from_dict(cls, data: Mapping) -> "DomainPattern":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            industry=data["industry"],
            use_case=data["use_case"],
            key_features=tuple(data.get("key_features", ())),
            schema_columns=tuple(
                SchemaColumn.model_validate(column) for column in data.get("schema_columns", ())
            ),
            table_name=data.get("table_name", data["id"].replace("-", "_")),
            baseline_quality=data.get("baseline_quality", 8),
            scoring_keywords=tuple(data.get("scoring_keywords", ())),
        )


def _columns(*specs: tuple[str, str, str]) -> tuple[SchemaColumn, ...]:
    return tuple(SchemaColumn(name=name, type=type_, description=desc) for name, type_, desc in specs)


CATALOG: tuple[DomainPattern, ...] = (
    # Healthcare
    DomainPattern(
        id="medical-appointment",
        name="医療予約管理システム",
        industry="healthcare",
        use_case="病院・クリニックの予約管理",
        key_features=("患者情報管理", "予約スケジューリング", "診療予約", "診療履歴", "通知システム"),
        schema_columns=_columns(
            ("patient_name", "text", "患者名"),
            ("doctor_name", "text", "担当医"),
            ("department", "text", "診療科"),
            ("appointment_at", "timestamp", "予約日時"),
            ("symptoms", "text", "症状"),
            ("status", "text", "予約状況"),
        ),
        table_name="appointments",
        baseline_quality=9,
    ),
    DomainPattern(
        id="pharmacy-inventory",
        name="薬局在庫管理システム",
        industry="healthcare",
        use_case="薬局の在庫・処方薬管理",
        key_features=("薬品在庫追跡", "処方薬管理", "期限切れアラート", "仕入先管理"),
        schema_columns=_columns(
            ("drug_name", "text", "薬品名"),
            ("quantity", "integer", "在庫数"),
            ("expires_on", "date", "使用期限"),
            ("supplier", "text", "仕入先"),
            ("requires_prescription", "boolean", "処方薬"),
        ),
        table_name="medicines",
        baseline_quality=8,
    ),
    # Education
    DomainPattern(
        id="lms-platform",
        name="オンライン学習管理システム",
        industry="education",
        use_case="e-ラーニングプラットフォーム",
        key_features=("コース管理", "進捗追跡", "クイズ・テスト", "動画学習", "ディスカッション"),
        schema_columns=_columns(
            ("course_title", "text", "コース名"),
            ("instructor", "text", "講師"),
            ("learner_name", "text", "受講者"),
            ("progress", "integer", "進捗率"),
            ("completed", "boolean", "修了"),
        ),
        table_name="enrollments",
        baseline_quality=9,
    ),
    DomainPattern(
        id="school-administration",
        name="学校運営管理システム",
        industry="education",
        use_case="学校の総合管理システム",
        key_features=("生徒情報管理", "出席管理", "成績管理", "保護者連絡", "スタッフ管理"),
        schema_columns=_columns(
            ("student_name", "text", "生徒名"),
            ("grade", "text", "学年"),
            ("class_name", "text", "クラス"),
            ("attendance", "text", "出欠"),
            ("guardian_contact", "text", "保護者連絡先"),
        ),
        table_name="students",
        baseline_quality=8,
    ),
    # Finance
    DomainPattern(
        id="expense-tracker",
        name="経費管理・家計簿アプリ",
        industry="finance",
        use_case="個人・法人の経費管理",
        key_features=("支出記録", "カテゴリ分類", "予算管理", "レシート読取", "レポート生成"),
        schema_columns=_columns(
            ("spent_on", "date", "日付"),
            ("category", "text", "カテゴリ"),
            ("amount", "integer", "金額"),
            ("payment_method", "text", "支払方法"),
            ("memo", "text", "メモ"),
        ),
        table_name="expenses",
        baseline_quality=9,
    ),
    DomainPattern(
        id="investment-portfolio",
        name="投資ポートフォリオ管理",
        industry="finance",
        use_case="投資資産の管理・分析",
        key_features=("ポートフォリオ分析", "銘柄チャート", "リスク評価", "パフォーマンス追跡"),
        schema_columns=_columns(
            ("symbol", "text", "銘柄コード"),
            ("asset_name", "text", "銘柄名"),
            ("shares", "numeric", "保有数"),
            ("acquired_price", "numeric", "取得単価"),
            ("current_price", "numeric", "現在値"),
        ),
        table_name="holdings",
        baseline_quality=8,
    ),
    # Hospitality
    DomainPattern(
        id="hotel-reservation",
        name="ホテル予約管理システム",
        industry="hospitality",
        use_case="ホテル・旅館の予約管理",
        key_features=("客室管理", "予約カレンダー", "ゲスト情報", "料金設定", "ハウスキーピング"),
        schema_columns=_columns(
            ("guest_name", "text", "宿泊者名"),
            ("room_number", "text", "部屋番号"),
            ("check_in", "date", "チェックイン"),
            ("check_out", "date", "チェックアウト"),
            ("guests", "integer", "人数"),
            ("status", "text", "予約状況"),
        ),
        table_name="reservations",
        baseline_quality=9,
    ),
    DomainPattern(
        id="restaurant-pos",
        name="レストランPOSシステム",
        industry="hospitality",
        use_case="レストランの注文・決済管理",
        key_features=("メニュー管理", "注文処理", "決済システム", "テーブル管理", "キッチン連携"),
        schema_columns=_columns(
            ("table_number", "text", "テーブル番号"),
            ("menu_item", "text", "メニュー"),
            ("quantity", "integer", "数量"),
            ("total_price", "integer", "合計金額"),
            ("status", "text", "注文状況"),
        ),
        table_name="orders",
        baseline_quality=8,
    ),
    # Logistics
    DomainPattern(
        id="delivery-tracking",
        name="配送追跡システム",
        industry="logistics",
        use_case="荷物の配送状況管理",
        key_features=("リアルタイム追跡", "ルート最適化", "ドライバー管理", "配送状況通知"),
        schema_columns=_columns(
            ("tracking_number", "text", "追跡番号"),
            ("recipient", "text", "受取人"),
            ("address", "text", "配送先"),
            ("driver", "text", "担当ドライバー"),
            ("status", "text", "配送状況"),
        ),
        table_name="deliveries",
        baseline_quality=9,
    ),
    DomainPattern(
        id="warehouse-management",
        name="倉庫管理システム",
        industry="logistics",
        use_case="倉庫内の在庫・作業管理",
        key_features=("在庫管理", "バーコード管理", "ピッキング", "出荷管理", "アラート機能"),
        schema_columns=_columns(
            ("sku", "text", "商品コード"),
            ("item_name", "text", "品名"),
            ("location", "text", "保管場所"),
            ("quantity", "integer", "在庫数"),
            ("reorder_level", "integer", "発注点"),
        ),
        table_name="inventory_items",
        baseline_quality=8,
    ),
    # Real estate
    DomainPattern(
        id="property-listing",
        name="不動産物件検索サイト",
        industry="real-estate",
        use_case="不動産物件の検索・閲覧",
        key_features=("物件検索", "地図表示", "詳細情報", "写真ギャラリー", "問い合わせ"),
        schema_columns=_columns(
            ("property_name", "text", "物件名"),
            ("address", "text", "所在地"),
            ("price", "integer", "価格"),
            ("floor_plan", "text", "間取り"),
            ("area_sqm", "numeric", "面積"),
        ),
        table_name="properties",
        baseline_quality=9,
    ),
    DomainPattern(
        id="property-management",
        name="不動産管理システム",
        industry="real-estate",
        use_case="賃貸物件の管理・運営",
        key_features=("入居者管理", "賃料管理", "メンテナンス", "財務レポート", "契約管理"),
        schema_columns=_columns(
            ("property_name", "text", "物件名"),
            ("tenant_name", "text", "入居者"),
            ("monthly_rent", "integer", "月額賃料"),
            ("contract_ends_on", "date", "契約満了日"),
            ("payment_status", "text", "入金状況"),
        ),
        table_name="leases",
        baseline_quality=8,
    ),
    # E-commerce
    DomainPattern(
        id="marketplace-platform",
        name="マルチベンダーマーケットプレイス",
        industry="ecommerce",
        use_case="複数店舗が出店するECサイト",
        key_features=("店舗管理", "商品カタログ", "注文処理", "決済機能", "レビューシステム"),
        schema_columns=_columns(
            ("shop_name", "text", "店舗名"),
            ("product_name", "text", "商品名"),
            ("price", "integer", "価格"),
            ("stock", "integer", "在庫数"),
            ("rating", "numeric", "評価"),
        ),
        table_name="products",
        baseline_quality=9,
    ),
    DomainPattern(
        id="subscription-commerce",
        name="サブスクリプションコマース",
        industry="ecommerce",
        use_case="定期購入・サブスク型ECサイト",
        key_features=("プラン管理", "定期課金", "配送スケジュール", "顧客ポータル", "分析機能"),
        schema_columns=_columns(
            ("customer_name", "text", "顧客名"),
            ("plan_name", "text", "プラン"),
            ("monthly_fee", "integer", "月額料金"),
            ("next_delivery_on", "date", "次回配送日"),
            ("status", "text", "契約状況"),
        ),
        table_name="subscriptions",
        baseline_quality=8,
    ),
)


class PatternCatalog:
    """
    Read-only, ordered set of DomainPatterns.

    Declaration order is significant: it breaks score ties.

    Usage:
        catalog = PatternCatalog.default()
        catalog.get("medical-appointment")
        catalog.by_industry("healthcare")
    """

    def __init__(self, patterns: Sequence[DomainPattern]):
        """
        Initialize catalog with patterns.

        Args:
            patterns: Patterns in declaration order. Ids must be unique.
        """
        self._patterns = tuple(patterns)
        self._by_id: dict[str, DomainPattern] = {}
        self._by_industry: dict[str, list[DomainPattern]] = {}
        self._build_indices()

    def _build_indices(self) -> None:
        for pattern in self._patterns:
            if pattern.id in self._by_id:
                raise ValueError(f"Duplicate pattern id: {pattern.id}")
            self._by_id[pattern.id] = pattern
            self._by_industry.setdefault(pattern.industry, []).append(pattern)

    @classmethod
    def default(cls) -> "PatternCatalog":
        """The built-in fourteen-pattern catalog."""
        return cls(CATALOG)

    @classmethod
    def load(cls, json_path: str) -> "PatternCatalog":
        """
        Load a catalog from a JSON list of pattern records.

        Args:
            json_path: Path to the JSON file.

        Returns:
            Loaded PatternCatalog, or the built-in one if the file is missing.
        """
        if not os.path.exists(json_path):
            logger.warning(f"Pattern catalog not found at {json_path}, using built-in catalog")
            return cls.default()

        with open(json_path, 'r', encoding='utf-8') as f:
            raw_data = json.load(f)

        return cls([DomainPattern.from_dict(record) for record in raw_data])

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[DomainPattern]:
        return iter(self._patterns)

    def get(self, pattern_id: str) -> DomainPattern | None:
        return self._by_id.get(pattern_id)

    def by_industry(self, industry: str) -> list[DomainPattern]:
        return list(self._by_industry.get(industry, []))

    @property
    def industries(self) -> list[str]:
        return list(self._by_industry)


@dataclass(frozen=True)
class PatternMatch:
    """Outcome of matching an idea: the selected pattern (or None) and its score."""
    pattern: DomainPattern | None
    score: float
    industries: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return self.pattern is not None

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern.id if self.pattern else None,
            "score": self.score,
            "industries": list(self.industries),
        }


class PatternMatcher:
    """
    Weighted keyword scoring of an idea against the catalog.

    score = 0.50 * industry tag present
          + 0.20 * word overlap between idea and use case
          + 0.15 * any key feature appears verbatim
          + 0.10 * share of the industry's keywords present
          + 0.05 * baseline_quality / 10

    Usage:
        matcher = PatternMatcher(PatternCatalog.default())
        match = matcher.match("病院の診療予約システムを作りたい")
        schema = build_target_schema(match)
    """

    def __init__(
        self,
        catalog: PatternCatalog | None = None,
        industry_keywords: Mapping[str, Sequence[str]] | None = None,
        threshold: float = MATCH_THRESHOLD,
    ):
        self.catalog = catalog or PatternCatalog.default()
        self.industry_keywords = {
            industry: tuple(keywords)
            for industry, keywords in (industry_keywords or INDUSTRY_KEYWORDS).items()
        }
        self.threshold = threshold

    def extract_industry_tags(self, text: str) -> tuple[str, ...]:
        """Industries with at least one keyword in the text, in table order."""
        haystack = _fold(text)
        return tuple(
            industry for industry, keywords in self.industry_keywords.items()
            if any(_fold(keyword) in haystack for keyword in keywords)
        )

    def score_pattern(self, pattern: DomainPattern, text: str, tags: Sequence[str]) -> float:
        """Weighted score of one pattern, clipped to [0, 1]."""
        haystack = _fold(text)
        score = 0.0

        if pattern.industry in tags:
            score += INDUSTRY_WEIGHT

        score += jaccard(text, pattern.use_case) * USE_CASE_WEIGHT

        if any(_fold(feature) in haystack for feature in pattern.key_features):
            score += FEATURE_WEIGHT

        keywords = pattern.scoring_keywords
        if keywords:
            present = sum(1 for keyword in keywords if _fold(keyword) in haystack)
            score += present / len(keywords) * DENSITY_WEIGHT

        score += pattern.baseline_quality / 10 * BASELINE_WEIGHT

        return round(min(max(score, 0.0), 1.0), SCORE_PRECISION)

    def match(self, idea: str, hint: str | None = None) -> PatternMatch:
        """
        Select the best pattern for an idea.

        Args:
            idea: Free-text idea. Industry tags come from this text only.
            hint: Optional structured summary (e.g. Insight features) that
                also counts towards use case, feature and keyword signals.

        Returns:
            PatternMatch with the highest score. pattern is None unless that
            score reaches the threshold. Earlier catalog entries win ties.
        """
        tags = self.extract_industry_tags(idea)
        text = f"{idea}\n{hint}" if hint else idea

        best: DomainPattern | None = None
        best_score = 0.0
        for pattern in self.catalog:
            score = self.score_pattern(pattern, text, tags)
            if best is None or score > best_score:
                best, best_score = pattern, score

        if best is None or best_score < self.threshold:
            logger.debug(f"No pattern selected (best {best_score:.3f} below {self.threshold})")
            return PatternMatch(pattern=None, score=best_score, industries=tags)

        logger.info(f"Matched pattern {best.id} with score {best_score:.3f}")
        return PatternMatch(pattern=best, score=best_score, industries=tags)


def build_target_schema(match: PatternMatch) -> ProjectSchema:
    """The matched pattern's schema, or the generic title/description/status one."""
    if match.pattern is None:
        return ProjectSchema.generic()
    return match.pattern.schema()


def _fold(text: str) -> str:
    return (text or "").casefold()
