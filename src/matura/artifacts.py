"""Pydantic models for the artifact each phase produces, plus their fallbacks."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from matura.state import Phase

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ArtifactModel(BaseModel):
    """Frozen base: an artifact is never modified once parsed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    @classmethod
    def fallback(cls) -> "ArtifactModel":
        """
        Deterministic artifact used when a response cannot be parsed.

        Abstract hook: every phase artifact in ARTIFACT_TYPES overrides it.
        """
        raise NotImplementedError(f"{cls.__name__} has no fallback")


class TalkReply(ArtifactModel):
    """Assistant turn produced during FreeTalk."""

    reply: NonEmptyStr

    @classmethod
    def fallback(cls) -> "TalkReply":
        return cls(reply="すみません、もう一度教えていただけますか？")


class Insight(ArtifactModel):
    """The idea structured into why / who / what / how / impact."""

    vision: NonEmptyStr = Field(description="Why: what the app should achieve")
    target: NonEmptyStr = Field(description="Who: the intended users")
    features: list[NonEmptyStr] = Field(min_length=1, description="What: main features")
    value: NonEmptyStr = Field(description="How: the value delivered")
    motivation: NonEmptyStr = Field(description="Impact: why the user wants it")

    @classmethod
    def fallback(cls) -> "Insight":
        return cls(
            vision="アイデアを形にする",
            target="一般ユーザー",
            features=["基本機能", "ユーザー管理", "データ管理"],
            value="日々の課題を解決する",
            motivation="アイデアを実現したい",
        )


class StyleColors(ArtifactModel):
    primary: NonEmptyStr
    secondary: NonEmptyStr
    accent: NonEmptyStr
    background: NonEmptyStr
    text: NonEmptyStr


class StyleTypography(ArtifactModel):
    heading: NonEmptyStr
    body: NonEmptyStr


class UIStyleChoice(ArtifactModel):
    """Visual direction picked in SketchView."""

    id: NonEmptyStr
    name: NonEmptyStr
    description: NonEmptyStr
    category: NonEmptyStr
    colors: StyleColors
    typography: StyleTypography
    spacing: Literal["tight", "comfortable", "spacious"] = "comfortable"
    personality: list[NonEmptyStr] = Field(default_factory=list)

    @classmethod
    def fallback(cls) -> "UIStyleChoice":
        return cls(
            id="modern-gradient",
            name="Modern Gradient",
            description="洗練されたグラデーションと柔らかな影で、現代的で親しみやすい印象を与えます",
            category="modern",
            colors=StyleColors(
                primary="#6366f1",
                secondary="#a855f7",
                accent="#ec4899",
                background="#ffffff",
                text="#1f2937",
            ),
            typography=StyleTypography(
                heading="font-bold tracking-tight",
                body="font-medium leading-relaxed",
            ),
            spacing="comfortable",
            personality=["親しみやすい", "モダン", "信頼感"],
        )


class UXDesign(ArtifactModel):
    """Screen structure combining the Insight with the chosen style."""

    layout: NonEmptyStr
    color_scheme: NonEmptyStr = Field(alias="colorScheme")
    typography: NonEmptyStr
    navigation: NonEmptyStr
    components: list[NonEmptyStr] = Field(min_length=1)
    interactions: list[NonEmptyStr] = Field(min_length=1)

    @classmethod
    def fallback(cls) -> "UXDesign":
        return cls(
            layout="ヘッダー・メイン・フッターの縦積みレイアウト",
            color_scheme="プライマリカラーを基調としたライトテーマ",
            typography="見出しは太字、本文は読みやすいサンセリフ",
            navigation="上部の固定ナビゲーションバー",
            components=["ヘッダー", "メインコンテンツ", "入力フォーム", "フッター"],
            interactions=["ホバー効果", "フォーム送信", "画面遷移"],
        )


class GeneratedCode(ArtifactModel):
    """Full single-file application source from CodePlayground."""

    code: NonEmptyStr
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def fallback(cls) -> "GeneratedCode":
        code = (
            "<!DOCTYPE html>\n"
            "<html lang=\"ja\">\n"
            "<head><meta charset=\"UTF-8\"><title>Generated App</title></head>\n"
            "<body>\n"
            "  <main><h1>Generated App</h1><p>コードの生成に失敗しました。再生成してください。</p></main>\n"
            "</body>\n"
            "</html>"
        )
        return cls(code=code, metadata={"language": "html", "line_count": code.count("\n") + 1})


class ReleaseInfo(ArtifactModel):
    """Launch plan assembled in ReleaseBoard."""

    title: NonEmptyStr
    summary: NonEmptyStr
    platform: NonEmptyStr
    features: list[NonEmptyStr] = Field(min_length=1)
    monetization: NonEmptyStr

    @classmethod
    def fallback(cls) -> "ReleaseInfo":
        return cls(
            title="Generated App",
            summary="アイデアから生成されたWebアプリケーション",
            platform="web",
            features=["基本機能"],
            monetization="無料",
        )


# Artifact type produced by each phase
ARTIFACT_TYPES: dict[Phase, type[ArtifactModel]] = {
    Phase.FREE_TALK: TalkReply,
    Phase.INSIGHT_REFINE: Insight,
    Phase.SKETCH_VIEW: UIStyleChoice,
    Phase.UX_BUILD: UXDesign,
    Phase.CODE_PLAYGROUND: GeneratedCode,
    Phase.RELEASE_BOARD: ReleaseInfo,
}


# =============================================================================
# Generation-target schema
# =============================================================================

class SchemaColumn(ArtifactModel):
    name: NonEmptyStr
    type: NonEmptyStr = "text"
    description: str = ""


SYSTEM_COLUMNS = (
    SchemaColumn(name="id", type="uuid", description="主キー"),
    SchemaColumn(name="created_at", type="timestamp", description="作成日時"),
    SchemaColumn(name="updated_at", type="timestamp", description="更新日時"),
)


class ProjectSchema(ArtifactModel):
    """Table the generated app stores its records in."""

    table_name: NonEmptyStr
    columns: list[SchemaColumn] = Field(min_length=1)
    pattern_id: str | None = None

    def all_columns(self) -> list[SchemaColumn]:
        """User columns followed by id, created_at, updated_at."""
        return [*self.columns, *SYSTEM_COLUMNS]

    def column_names(self) -> list[str]:
        return [column.name for column in self.all_columns()]

    @classmethod
    def generic(cls) -> "ProjectSchema":
        return cls(
            table_name="items",
            columns=[
                SchemaColumn(name="title", type="text", description="タイトル"),
                SchemaColumn(name="description", type="text", description="説明"),
                SchemaColumn(name="status", type="text", description="ステータス"),
            ],
        )
