"""Tests for the individual locator strategies."""

import json

import pytest

from conftest import FakeLLM
from testmind.locator.adapter import BrowserAdapter, BrowserContext
from testmind.locator.strategies import (
    CssSelectorStrategy,
    IdStrategy,
    SemanticStrategy,
    VisualStrategy,
    XPathStrategy,
)
from testmind.locator.strategies.css import adjust_confidence, selector_complexity
from testmind.locator.strategies.visual import VisualFeatures, features_from_mapping, parse_color
from testmind.locator.strategies.xpath import is_valid_xpath, xpath_literal
from testmind.models import ElementDescriptor, LocatorStrategy


class DuplicateAdapter(BrowserAdapter):
    """Every selector matches two elements."""

    async def find_element(self, selector):
        return {"selector": selector}

    async def find_elements(self, selector):
        return [{"selector": selector}, {"selector": selector}]

    async def get_simplified_dom(self, max_depth=5):
        return ""


class TestIdStrategy:
    """Tests for IdStrategy."""

    @pytest.mark.asyncio
    async def test_unique_id(self, browser):
        result = await IdStrategy().locate(ElementDescriptor(id="email"), browser)

        assert result.strategy is LocatorStrategy.ID
        assert result.confidence == pytest.approx(0.95)
        assert result.metadata == {"selector": "#email", "attribute": "id", "unique": True}
        assert result.element.id == "email"

    @pytest.mark.asyncio
    async def test_test_attribute_beats_everything(self, browser):
        descriptor = ElementDescriptor(attributes={"data-testid": "submit-button"})

        result = await IdStrategy().locate(descriptor, browser)

        assert result.confidence == 1.0
        assert result.metadata["selector"] == '[data-testid="submit-button"]'

    @pytest.mark.asyncio
    async def test_duplicates_are_penalized(self):
        context = BrowserContext(adapter=DuplicateAdapter())

        result = await IdStrategy().locate(ElementDescriptor(id="dup"), context)

        assert result.confidence == pytest.approx(0.75)
        assert result.metadata["unique"] is False

    @pytest.mark.asyncio
    async def test_duplicate_below_threshold_is_skipped(self):
        context = BrowserContext(adapter=DuplicateAdapter())
        descriptor = ElementDescriptor(attributes={"aria-label": "Close"})

        assert await IdStrategy().locate(descriptor, context) is None

    @pytest.mark.asyncio
    async def test_missing_element(self, browser):
        assert await IdStrategy().locate(ElementDescriptor(id="nope"), browser) is None

    @pytest.mark.asyncio
    async def test_no_context(self):
        assert await IdStrategy().locate(ElementDescriptor(id="email"), None) is None

    def test_non_identifier_ids_use_attribute_form(self):
        (selector, _, _), = IdStrategy().candidates(ElementDescriptor(id="1st item"))

        assert selector == '[id="1st item"]'


class TestCssSelectorStrategy:
    """Tests for CssSelectorStrategy."""

    @pytest.mark.asyncio
    async def test_direct_selector(self, browser):
        descriptor = ElementDescriptor(css_selector="button.btn-primary")

        result = await CssSelectorStrategy().locate(descriptor, browser)

        assert result.metadata["variant"] == "direct"
        assert result.confidence == pytest.approx(0.90)
        assert result.element.data_testid == "submit-button"

    @pytest.mark.asyncio
    async def test_falls_back_to_variants(self, browser):
        descriptor = ElementDescriptor(
            css_selector="#old-submit-btn",
            attributes={"tag": "button", "class": "btn"},
        )

        result = await CssSelectorStrategy().locate(descriptor, browser)

        assert result.metadata["variant"] == "precise"
        assert result.metadata["selector"] == "button.btn"
        assert result.metadata["matches"] == 2
        assert result.confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_malformed_direct_selector_is_skipped(self, browser, snapshot):
        descriptor = ElementDescriptor(css_selector="button[", attributes={"tag": "button", "class": "btn"})

        result = await CssSelectorStrategy().locate(descriptor, browser)

        assert snapshot.query("button[") == []
        assert result.metadata["variant"] == "precise"
        assert result.metadata["selector"] == "button.btn"

    def test_variant_order(self):
        descriptor = ElementDescriptor(
            css_selector="form .submit",
            text_content="Sign In",
            attributes={"tagName": "BUTTON", "class": "btn primary", "data-testid": "go", "type": "submit"},
        )

        names = [name for name, _, _ in CssSelectorStrategy().variants(descriptor)]

        # tag_only repeats the text_match selector and is dropped
        assert names == ["direct", "precise", "partial", "type_match", "text_match", "class_only"]

    def test_complexity_and_bonuses(self):
        assert selector_complexity("button.btn.primary") == 3
        assert selector_complexity('[data-test="x"]') == 1.5
        assert selector_complexity("#a") == 2
        # unique, complex and a test attribute
        assert adjust_confidence(0.8, 'button.a[data-test="x"]', 1) == pytest.approx(1.0)
        assert adjust_confidence(0.8, "button", 5) == pytest.approx(0.6)


class TestXPathStrategy:
    """Tests for XPathStrategy."""

    @pytest.mark.asyncio
    async def test_text_match(self, browser):
        descriptor = ElementDescriptor(text_content="Sign In", attributes={"tag": "button"})

        result = await XPathStrategy().locate(descriptor, browser)

        assert result.strategy is LocatorStrategy.XPATH
        assert result.metadata["variant"] == "text_exact"
        assert result.metadata["xpath"] == '//button[text()="Sign In"]'
        assert result.metadata["path_type"] == "relative"
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_absolute_direct_path(self, browser):
        descriptor = ElementDescriptor(xpath="/html/body/main/form/input[1]")

        result = await XPathStrategy().locate(descriptor, browser)

        assert result.metadata["path_type"] == "absolute"
        assert result.confidence == pytest.approx(0.80)
        assert result.element.id == "email"

    @pytest.mark.asyncio
    async def test_invalid_direct_xpath_is_skipped(self, browser):
        descriptor = ElementDescriptor(xpath="//input[@id='email'", attributes={"id": "email"})

        result = await XPathStrategy().locate(descriptor, browser)

        assert result.metadata["variant"] == "id"

    def test_literal_quoting(self):
        assert xpath_literal("plain") == '"plain"'
        assert xpath_literal('say "hi"') == "'say \"hi\"'"
        assert xpath_literal("it's \"x\"") == "concat(\"it's \", '\"', \"x\", '\"', \"\")"

    def test_validity(self):
        assert is_valid_xpath("//div[@id='a']")
        assert not is_valid_xpath("div")
        assert not is_valid_xpath("//div[")


class TestVisualStrategy:
    """Tests for VisualStrategy."""

    @pytest.mark.asyncio
    async def test_matches_by_features(self, browser):
        target = VisualFeatures(x=125, y=342, width=200, height=40, background_color="#0066ff", text="Sign In")
        descriptor = ElementDescriptor(visual_signature=target.signature())

        result = await VisualStrategy().locate(descriptor, browser)

        assert result.strategy is LocatorStrategy.VISUAL
        assert result.confidence == pytest.approx(0.80)
        assert result.metadata["similarity"] == pytest.approx(1.0)
        assert result.metadata["selector"] == '[data-testid="submit-button"]'
        assert result.element.data_testid == "submit-button"

    @pytest.mark.asyncio
    async def test_underscore_attributes_as_target(self, browser):
        descriptor = ElementDescriptor(
            text_content="Cancel",
            attributes={"_x": "340", "_y": "340", "_width": "120", "_height": "40", "_backgroundColor": "#eee"},
        )

        result = await VisualStrategy().locate(descriptor, browser)

        assert result.element.text == "Cancel"

    @pytest.mark.asyncio
    async def test_needs_target_features(self, browser):
        assert await VisualStrategy().locate(ElementDescriptor(id="email"), browser) is None

    @pytest.mark.asyncio
    async def test_needs_candidates(self, snapshot):
        descriptor = ElementDescriptor(visual_signature=VisualFeatures(x=1, y=1).signature())

        assert await VisualStrategy().locate(descriptor, BrowserContext(adapter=snapshot)) is None

    def test_color_similarity(self):
        assert VisualStrategy.color_similarity("#fff", "#FFFFFF") == 1.0
        assert VisualStrategy.color_similarity("#000000", "#ffffff") == 0.0
        assert VisualStrategy.color_similarity(None, "#ffffff") == 0.5
        assert VisualStrategy.color_similarity("rgb(0, 102, 255)", "#0066ff") == 1.0

    def test_text_similarity(self):
        assert VisualStrategy.text_similarity(None, None) == 1.0
        assert VisualStrategy.text_similarity("a", None) == 0.0
        assert VisualStrategy.text_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_nested_position_and_size(self):
        features = features_from_mapping({"position": {"x": 5, "y": 6}, "size": {"width": 7, "height": 8}})

        assert (features.x, features.y, features.width, features.height) == (5, 6, 7, 8)

    def test_parse_color(self):
        assert parse_color("#0066ff") == (0, 102, 255)
        assert parse_color("#abc") == (170, 187, 204)
        assert parse_color("rgba(1, 2, 3, 0.5)") == (1, 2, 3)
        assert parse_color("blue") is None


class TestSemanticStrategy:
    """Tests for SemanticStrategy."""

    @pytest.mark.asyncio
    async def test_json_response(self, browser):
        llm = FakeLLM(json.dumps({
            "selectors": [
                {"type": "css", "value": "#missing", "confidence": 0.9},
                {"type": "css", "value": '[data-testid="submit-button"]', "confidence": 0.9},
            ],
            "reasoning": "submit button",
        }))
        descriptor = ElementDescriptor(semantic_intent="the sign in button")

        result = await SemanticStrategy(llm).locate(descriptor, browser)

        assert result.strategy is LocatorStrategy.SEMANTIC
        assert result.confidence == pytest.approx(0.855)
        assert result.metadata["selector"] == '[data-testid="submit-button"]'
        assert 'data-testid="submit-button"' in llm.requests[0].prompt
        assert llm.requests[0].max_tokens == 500

    @pytest.mark.asyncio
    async def test_id_type_gets_hash(self, browser):
        llm = FakeLLM('{"selectors": [{"type": "id", "value": "email", "confidence": 0.8}]}')

        result = await SemanticStrategy(llm).locate(ElementDescriptor(semantic_intent="email field"), browser)

        assert result.metadata["selector"] == "#email"

    @pytest.mark.asyncio
    async def test_plain_text_response(self, browser):
        llm = FakeLLM("Try these:\n1. `#email`\n- //button[@type='submit']")

        result = await SemanticStrategy(llm).locate(ElementDescriptor(semantic_intent="email"), browser)

        assert result.metadata["selector"] == "#email"
        assert result.confidence == pytest.approx(0.75 * 0.95)

    @pytest.mark.asyncio
    async def test_low_confidence_analysis_is_rejected(self, browser):
        llm = FakeLLM('{"selectors": [{"type": "id", "value": "email", "confidence": 0.4}]}')

        assert await SemanticStrategy(llm).locate(ElementDescriptor(semantic_intent="email"), browser) is None

    @pytest.mark.asyncio
    async def test_llm_failure_yields_none(self, browser):
        llm = FakeLLM(RuntimeError("quota exceeded"))

        assert await SemanticStrategy(llm).locate(ElementDescriptor(semantic_intent="email"), browser) is None

    @pytest.mark.asyncio
    async def test_requires_intent(self, browser):
        llm = FakeLLM()

        assert await SemanticStrategy(llm).locate(ElementDescriptor(id="email"), browser) is None
        assert llm.requests == []

    def test_simple_parse_detects_xpath(self):
        analysis = SemanticStrategy(FakeLLM()).parse_simple_response("//a[@href='/x']\nnothing here")

        assert [(s.type, s.value) for s in analysis.selectors] == [("xpath", "//a[@href='/x']")]
