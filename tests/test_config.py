"""
Tests for RAGConfig defaults, merging and validation.
"""

import pytest
from pydantic import ValidationError

from pedsquery.config import RAGConfig, default_config, merge_config


class TestDefaults:
    @pytest.mark.unit
    def test_default_values(self):
        config = default_config()

        assert config.max_documents == 5
        assert config.similarity_threshold == 0.7
        assert config.temperature == 0.1
        assert config.max_response_tokens == 2048
        assert config.search_mode == "vector"
        assert config.chapter_filter is None
        assert config.adaptive_retrieval is False
        assert config.history_window == 6

    @pytest.mark.unit
    def test_frozen(self):
        config = default_config()
        with pytest.raises(ValidationError):
            config.max_documents = 10


class TestMergeConfig:
    """Tests for merge_config()."""

    @pytest.mark.unit
    def test_none_returns_base(self):
        base = RAGConfig(max_documents=8)
        assert merge_config(None, base) is base

    @pytest.mark.unit
    def test_mapping_replaces_named_keys_only(self):
        base = RAGConfig(max_documents=8, temperature=0.5)
        merged = merge_config({"similarity_threshold": 0.6}, base)

        assert merged.similarity_threshold == 0.6
        assert merged.max_documents == 8
        assert merged.temperature == 0.5
        # Base is untouched
        assert base.similarity_threshold == 0.7

    @pytest.mark.unit
    def test_full_config_replaces_base(self):
        override = RAGConfig(search_mode="hybrid")
        assert merge_config(override, RAGConfig(max_documents=8)) is override

    @pytest.mark.unit
    def test_defaults_when_no_base(self):
        assert merge_config({"max_documents": 3}).max_documents == 3

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_documents": 0},
            {"max_documents": 21},
            {"similarity_threshold": 1.5},
            {"similarity_threshold": -0.1},
            {"temperature": 2.5},
            {"max_context_chars": 0},
            {"history_window": -1},
            {"search_mode": "keyword"},
            {"unknown_option": True},
        ],
    )
    def test_invalid_overrides_rejected(self, overrides):
        with pytest.raises(ValidationError):
            merge_config(overrides)
