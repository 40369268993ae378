# =============================================================================
# Unit Tests: Field Mapping and Reasoning Adapter
# =============================================================================

import json
from unittest.mock import Mock

import pandas as pd
import pytest

from level1_ingestion.schema_inferencer import FieldType, SchemaContract, infer_schema
from level3_mapping.agent import (
    MappingReasoner,
    ReasoningError,
    ReasoningParseError,
    apply_rationales,
    parse_suggestions,
)
from level3_mapping.mapper import FieldMapper, MappingError, RuleType, key_fields
from pipeline_config.schema import MappingConfig
from utils import LLMClientError


@pytest.fixture
def trades_schema():
    frame = pd.DataFrame(
        {
            "id": ["1", "2", "3"],
            "Amount": ["10.50", "20.00", "30.25"],
            "TradeDate": ["2024-01-01", "2024-01-02", "2024-01-03"],
            "region": ["N", "S", "E"],
        }
    )
    return infer_schema(frame)


@pytest.fixture
def mappings(trades_schema):
    return FieldMapper().map_schema(trades_schema)


# =============================================================================
# Test: FieldMapper
# =============================================================================

def test_maps_synonyms_onto_canonical_fields(mappings):
    targets = {m.source_field: m.target_field for m in mappings}
    assert targets == {
        "id": "security_id",
        "Amount": "transaction_amount",
        "TradeDate": "transaction_date",
        "region": "region",
    }


def test_mappings_keep_schema_order(mappings):
    assert [m.source_field for m in mappings] == ["id", "Amount", "TradeDate", "region"]


def test_canonical_key_mapping(mappings):
    key = mappings[0]
    assert key.is_key and key.canonical
    assert key.confidence == pytest.approx(0.95)
    assert key_fields(mappings) == ["security_id"]
    rule_types = [r.rule_type for r in key.validation_rules]
    assert rule_types == [RuleType.NOT_NULL, RuleType.LENGTH]


def test_canonical_measure_rules(mappings):
    amount = mappings[1]
    assert amount.target_type == FieldType.FLOAT
    rules = {r.rule_type: r for r in amount.validation_rules}
    assert rules[RuleType.TYPE].param("type") == "FLOAT"
    assert rules[RuleType.RANGE].param("min") == 0.0
    assert "transaction_amount" in amount.rationale


def test_passthrough_mapping(mappings):
    region = mappings[3]
    assert region.canonical is False
    assert region.target_type == FieldType.STRING
    assert region.validation_rules == ()
    assert "passed through" in region.rationale


def test_conflicting_sources_keep_highest_score():
    schema = infer_schema(pd.DataFrame({"id": ["1"], "sec_id": ["2"]}))
    result = FieldMapper().map_schema(schema)
    assert [m.target_field for m in result] == ["security_id", "sec_id"]
    assert result[1].canonical is False


def test_passthrough_key_gets_type_rule():
    schema = infer_schema(pd.DataFrame({"Customer ID": ["10", "11", "12"]}))
    (mapping,) = FieldMapper(MappingConfig(canonical_fields=[])).map_schema(schema)
    assert mapping.target_field == "customer_id"
    assert mapping.is_key
    assert [r.rule_type for r in mapping.validation_rules] == [RuleType.NOT_NULL, RuleType.TYPE]


@pytest.mark.parametrize("name", ["provider", "width", "valid", "monkey"])
def test_id_inside_a_word_is_not_a_key(name):
    schema = infer_schema(pd.DataFrame({name: ["a", "b", "c"]}))
    (mapping,) = FieldMapper(MappingConfig(canonical_fields=[])).map_schema(schema)
    assert not mapping.is_key
    assert key_fields([mapping]) == []


def test_key_named_field_with_repeated_values_is_not_a_key():
    schema = infer_schema(pd.DataFrame({"order_id": ["7", "7", "8"]}))
    (mapping,) = FieldMapper(MappingConfig(canonical_fields=[])).map_schema(schema)
    assert schema.fields[0].is_unique is True
    assert schema.fields[0].sample_distinct is False
    assert not mapping.is_key


def test_passthrough_skips_type_rule_for_mixed_samples():
    schema = infer_schema(pd.DataFrame({"qty": ["1", "2", "many"]}))
    (mapping,) = FieldMapper(MappingConfig(canonical_fields=[])).map_schema(schema)
    assert mapping.target_type == FieldType.INTEGER
    assert mapping.validation_rules == ()


def test_type_mismatch_lowers_score():
    schema = infer_schema(pd.DataFrame({"amount": ["abc", "def"]}))
    mapper = FieldMapper()
    score, _ = mapper.score(schema.fields[0], mapper.canonical["transaction_amount"])
    assert score == pytest.approx(0.95 * 0.7)


def test_empty_schema_raises():
    with pytest.raises(MappingError, match="no fields"):
        FieldMapper().map_schema(SchemaContract(fields=[], row_count=0))


# =============================================================================
# Test: Reasoning Adapter
# =============================================================================

def _reply(*suggestions):
    return json.dumps({"suggestions": list(suggestions)})


def test_parse_suggestions_strips_code_fences():
    raw = "```json\n" + _reply(
        {"source_field": "id", "target_field": "security_id", "rationale": "identifier"}
    ) + "\n```"
    parsed = parse_suggestions(raw)
    assert parsed.suggestions[0].target_field == "security_id"
    assert parsed.suggestions[0].confidence == 0.5


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"suggestions": [{"source_field": "id"}]}),
        json.dumps({"suggestions": [{"source_field": "id", "target_field": "x", "rationale": "r", "confidence": 3}]}),
    ],
)
def test_parse_suggestions_rejects_malformed_output(raw):
    with pytest.raises(ReasoningParseError):
        parse_suggestions(raw)


def test_reasoner_requires_client():
    with pytest.raises(ReasoningError, match="No LLM client"):
        MappingReasoner(None)


def test_reasoner_wraps_client_errors(trades_schema, mappings):
    client = Mock()
    client.complete.side_effect = LLMClientError("quota exceeded")
    with pytest.raises(ReasoningError, match="quota exceeded"):
        MappingReasoner(client).suggest(trades_schema, mappings)


def test_reasoner_prompt_and_rationales(trades_schema, mappings):
    client = Mock()
    client.complete.return_value = _reply(
        {"source_field": "id", "target_field": "security_id", "rationale": "Unique trade identifier."},
        {"source_field": "region", "target_field": "market_code", "rationale": "Looks like a market."},
    )
    suggestions = MappingReasoner(client).suggest(trades_schema, mappings)
    prompt = client.complete.call_args[0][0]
    assert "security_id" in prompt
    assert "Respond with JSON only" in prompt

    updated = apply_rationales(mappings, suggestions)
    assert updated[0].rationale == "Unique trade identifier."
    # Disagreeing suggestion never changes the target or rationale
    assert updated[3].target_field == "region"
    assert updated[3].rationale == mappings[3].rationale


def test_apply_rationales_without_suggestions(mappings):
    assert apply_rationales(mappings, None) == mappings
