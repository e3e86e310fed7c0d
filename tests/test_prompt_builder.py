import pytest

from conftest import make_image
from design_forge.exceptions import InvalidRequestError
from design_forge.models import (
    AspectRatio,
    ForgeConfig,
    GenerationRequest,
    ImageModel,
    PosterEngine,
    RemixEngine,
    VisualStyle,
    WorkflowKind,
)
from design_forge.prompt_builder import (
    NO_TEXT_CONSTRAINT,
    POSTER_REFERENCE_NOTE,
    dimension_hint,
    dimension_instruction,
)


@pytest.mark.parametrize("ratio,hint", [
    ("1:1", "1024x1024 pixels"),
    ("9:16", "1080x1920 pixels"),
    ("16:9", "1920x1080 pixels"),
    ("3:4", "1080x1440 pixels"),
    ("4:3", "1440x1080 pixels"),
])
def test_dimension_table(ratio, hint):
    assert dimension_hint(ratio) == hint
    assert hint in dimension_instruction(ratio, "poster")


def test_unknown_ratio_falls_back_to_bare_statement():
    assert dimension_hint("21:9") is None
    assert dimension_instruction("21:9") == "The image's aspect ratio must be exactly 21:9."


def test_poster_parts_order_and_constraints(builder, product_image):
    request = builder.build(GenerationRequest(
        kind=WorkflowKind.POSTER,
        prompt="neon city at night",
        images=(product_image,),
        aspect_ratio=AspectRatio.PORTRAIT,
        model=ImageModel.GEMINI_NANO,
    ))

    assert request.parts[0] == product_image
    assert isinstance(request.parts[1], str)
    assert len(request.parts) == 2
    assert 'Concept: "neon city at night"' in request.text
    assert "1080x1920 pixels" in request.text
    assert NO_TEXT_CONSTRAINT in request.text
    assert request.aspect_ratio == "9:16"
    assert request.model_id == ForgeConfig().model_ids[ImageModel.GEMINI_NANO]


def test_poster_reference_image_comes_after_text(builder, product_image):
    reference = make_image("reference")
    request = builder.build_poster(GenerationRequest(
        kind=WorkflowKind.POSTER,
        prompt="beach",
        images=(product_image, reference),
    ))

    assert request.parts[0] == product_image
    assert request.parts[2] == reference
    assert request.parts[3] == POSTER_REFERENCE_NOTE
    # 默认竖版
    assert request.aspect_ratio == "9:16"


def test_style_clause_omitted_for_none(builder, product_image):
    base = dict(kind=WorkflowKind.POSTER, prompt="forest", images=(product_image,))
    plain = builder.build(GenerationRequest(style=VisualStyle.NONE, **base)).text
    styled = builder.build(GenerationRequest(style=VisualStyle.RETRO, **base)).text

    assert "visual style" not in plain
    assert "None" not in plain
    assert "The overall visual style must be Retro." in styled


def test_clause_order_is_deterministic(builder, product_image):
    request = GenerationRequest(
        kind=WorkflowKind.POSTER,
        prompt="forest",
        images=(product_image,),
        style=VisualStyle.CYBERPUNK,
        model=ImageModel.GEMINI_FLASH_EXPERIMENTAL,
        poster_engine=PosterEngine.VIVID,
    )
    text = builder.build(request).text

    assert text == builder.build(request).text
    assert text.index("cinematic") < text.index("dynamic, vibrant") < text.index("Concept:") < text.index("Cyberpunk")


def test_image_prompt_with_negative_and_style(builder):
    request = builder.build(GenerationRequest(
        kind=WorkflowKind.IMAGE,
        prompt="a red fox",
        style=VisualStyle.MINIMALIST,
        aspect_ratio=AspectRatio.LANDSCAPE,
        negative_prompt="people",
        seed=7,
    ))

    lines = request.text.splitlines()
    assert lines[0] == "Minimalist style."
    assert lines[1] == "a red fox"
    assert "1920x1080 pixels" in lines[2]
    assert lines[3] == "Important: Do not include the following elements in the image: people."
    assert request.seed == 7
    assert request.aspect_ratio == "16:9"
    assert request.images == []


def test_image_requires_prompt(builder):
    with pytest.raises(InvalidRequestError):
        builder.build(GenerationRequest(kind=WorkflowKind.IMAGE, prompt="   "))


def test_logo_is_square_and_text_free(builder):
    request = builder.build(GenerationRequest(
        kind=WorkflowKind.LOGO,
        prompt="Acme Coffee",
        colors="brown and cream",
    ))

    assert request.aspect_ratio == "1:1"
    assert NO_TEXT_CONSTRAINT in request.text
    assert "brown and cream" in request.text
    assert "visual style" not in request.text


def test_remix_orders_base_then_source(builder):
    base, source = make_image("base"), make_image("source")
    request = builder.build(GenerationRequest(
        kind=WorkflowKind.REMIX,
        prompt="add the hat",
        images=(base, source),
        remix_engine=RemixEngine.ARTISTIC,
    ))

    assert request.parts[0] == base
    assert request.parts[1] == source
    assert "creative digital artist" in request.parts[2]


def test_remix_requires_two_images(builder):
    with pytest.raises(InvalidRequestError):
        builder.build(GenerationRequest(kind=WorkflowKind.REMIX, prompt="x", images=(make_image("a"),)))


def test_edit_requires_text_or_style(builder, product_image):
    with pytest.raises(InvalidRequestError):
        builder.build(GenerationRequest(kind=WorkflowKind.EDIT, images=(product_image,)))

    styled = builder.build(GenerationRequest(
        kind=WorkflowKind.EDIT,
        images=(product_image,),
        style=VisualStyle.ABSTRACT,
    ))
    assert styled.text.startswith("Apply a Abstract visual style")
    assert styled.model_id == ForgeConfig().edit_model_id


def test_text_operations_do_not_expect_images(builder, product_image):
    assert builder.build_prompt_from_image(product_image).expects_image is False
    assert builder.build_ad_copy(product_image).expects_image is False
    assert builder.build_background_removal(product_image).expects_image is True


def test_unsupported_kind_is_rejected(builder):
    with pytest.raises(InvalidRequestError):
        builder.build(GenerationRequest(kind=WorkflowKind.CHAT, prompt="hi"))


@pytest.mark.parametrize("variations", [0, 5, 2.0])
def test_request_rejects_bad_variation_count(variations):
    with pytest.raises(InvalidRequestError):
        GenerationRequest(kind=WorkflowKind.IMAGE, prompt="x", variations=variations)


def test_request_rejects_more_than_two_images():
    with pytest.raises(InvalidRequestError):
        GenerationRequest(kind=WorkflowKind.REMIX, images=[make_image(str(i)) for i in range(3)])
