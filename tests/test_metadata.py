"""Tests for bundle metadata reading."""

import json
import pytest
from sd_retarget.model.bundle import parse_shape, format_shape
from sd_retarget.model.metadata import (
    AttentionLayout,
    ArchitectureFamily,
    ConditioningType,
    ReadStatus,
    Resolution,
    read_attention_layout,
    read_architecture_family,
    read_native_resolution,
    read_conditioning_type,
    read_variable_shape_support,
)
from conftest import unet_inputs


def test_parse_shape():
    """Test shape string parsing."""
    assert parse_shape("[1, 3, 512, 768]") == [1, 3, 512, 768]
    assert parse_shape(" [2,4,64,64] ") == [2, 4, 64, 64]
    assert parse_shape("[]") == []
    
    with pytest.raises(ValueError):
        parse_shape("1, 3, 512, 512")
    with pytest.raises(ValueError):
        parse_shape("[1, 3, h, w]")


def test_format_shape():
    """Test shape serialization."""
    assert format_shape([1, 3, 768, 512]) == "[1, 3, 768, 512]"


def test_attention_split_einsum(make_bundle):
    """Einsum in the histogram means split-einsum attention."""
    result = read_attention_layout(make_bundle(einsum=True))
    
    assert result.ok
    assert result.value is AttentionLayout.SPLIT_EINSUM


def test_attention_original(make_bundle):
    """No einsum means original attention."""
    result = read_attention_layout(make_bundle(einsum=False))
    
    assert result.value is AttentionLayout.ORIGINAL


def test_attention_empty_histogram(make_bundle):
    """An empty or absent histogram means original attention."""
    empty = make_bundle(name="empty", unet_metadata=[{"mlProgramOperationTypeHistogram": {}}])
    absent = make_bundle(name="absent", unet_metadata=[{"inputSchema": []}])
    
    assert read_attention_layout(empty).value is AttentionLayout.ORIGINAL
    assert read_attention_layout(absent).value is AttentionLayout.ORIGINAL


@pytest.mark.parametrize("entries", [[], [{}, {}]])
def test_attention_wrong_entry_count(make_bundle, entries):
    """Sidecars must hold exactly one entry."""
    result = read_attention_layout(make_bundle(unet_metadata=entries))
    
    assert not result.ok
    assert result.status is ReadStatus.MALFORMED
    assert result.value is None


def test_attention_missing_metadata(tmp_path):
    """A directory without a core network is not found, not malformed."""
    result = read_attention_layout(tmp_path)
    
    assert result.status is ReadStatus.NOT_FOUND


def test_attention_unparseable_metadata(make_bundle):
    """Invalid JSON is reported as malformed."""
    bundle = make_bundle()
    (bundle / "Unet.mlmodelc" / "metadata.json").write_text("{not json")
    
    result = read_attention_layout(bundle)
    
    assert result.status is ReadStatus.MALFORMED
    assert "Unet.mlmodelc" in result.reason


def test_attention_chunked_unet(make_bundle):
    """Chunked core networks are read from the first chunk."""
    bundle = make_bundle(unet_dir="UnetChunk1.mlmodelc", einsum=True)
    
    assert read_attention_layout(bundle).value is AttentionLayout.SPLIT_EINSUM


def test_unet_preferred_over_chunk(make_bundle):
    """Unet.mlmodelc wins over UnetChunk1.mlmodelc."""
    bundle = make_bundle(einsum=False)
    chunk = bundle / "UnetChunk1.mlmodelc"
    chunk.mkdir()
    (chunk / "metadata.json").write_text(json.dumps([
        {"mlProgramOperationTypeHistogram": {"Ios16.einsum": 1}}
    ]))
    
    assert read_attention_layout(bundle).value is AttentionLayout.ORIGINAL


def test_architecture_family(make_bundle):
    """XL needs both time_ids and text_embeds."""
    assert read_architecture_family(make_bundle(name="sd")).value is ArchitectureFamily.STANDARD
    assert read_architecture_family(make_bundle(name="xl", xl=True)).value is ArchitectureFamily.XL
    
    only_time_ids = unet_inputs() + [{"name": "time_ids", "shape": "[2, 6]"}]
    partial = make_bundle(name="partial", unet_metadata=[{"inputSchema": only_time_ids}])
    assert read_architecture_family(partial).value is ArchitectureFamily.STANDARD


def test_architecture_family_defaults(tmp_path, make_bundle):
    """Unreadable metadata falls back to STANDARD at the call site."""
    result = read_architecture_family(tmp_path)
    
    assert not result.ok
    assert result.value_or(ArchitectureFamily.STANDARD) is ArchitectureFamily.STANDARD
    
    no_schema = make_bundle(unet_metadata=[{"mlProgramOperationTypeHistogram": {}}])
    assert read_architecture_family(no_schema).status is ReadStatus.MALFORMED


def test_native_resolution(make_bundle):
    """Height is index 2 and width index 3 of the decoder output."""
    bundle = make_bundle(decoder_metadata=[{
        "outputSchema": [{"name": "image", "shape": "[1, 3, 768, 512]"}],
    }])
    
    result = read_native_resolution(bundle)
    
    assert result.ok
    assert result.value == Resolution(width=512, height=768)


def test_native_resolution_xl(make_bundle):
    """Test SDXL native resolution."""
    assert read_native_resolution(make_bundle(xl=True)).value == Resolution(1024, 1024)


@pytest.mark.parametrize("metadata", [
    [{"outputSchema": []}],
    [{"outputSchema": [{"name": "image"}]}],
    [{"outputSchema": [{"name": "image", "shape": "[1, 3, 512]"}]}],
    [{"outputSchema": [{"name": "image", "shape": "[1, 3, h, w]"}]}],
    [{"inputSchema": []}],
])
def test_native_resolution_malformed(make_bundle, metadata):
    """Structural mismatches yield no resolution."""
    result = read_native_resolution(make_bundle(decoder_metadata=metadata))
    
    assert result.status is ReadStatus.MALFORMED
    assert result.value is None


def test_native_resolution_missing_decoder(make_bundle):
    """Test missing decoder sidecar."""
    bundle = make_bundle()
    (bundle / "VAEDecoder.mlmodelc" / "metadata.json").unlink()
    
    assert read_native_resolution(bundle).status is ReadStatus.NOT_FOUND


@pytest.mark.parametrize("adapter,controlnet,expected", [
    (True, True, ConditioningType.ALL),
    (True, False, ConditioningType.ADAPTER_ONLY),
    (False, True, ConditioningType.NETWORK_ONLY),
    (False, False, ConditioningType.NETWORK_ONLY),
])
def test_conditioning_type(make_bundle, adapter, controlnet, expected):
    """Both inputs present take precedence over either alone."""
    bundle = make_bundle(adapter=adapter, controlnet=controlnet)
    
    assert read_conditioning_type(bundle).value is expected


def test_conditioning_type_exact_names(make_bundle):
    """Input names must match exactly, not by prefix."""
    inputs = unet_inputs() + [{"name": "adapter_res_samples_001", "shape": "[1]"}]
    bundle = make_bundle(unet_metadata=[{"inputSchema": inputs}])
    
    assert read_conditioning_type(bundle).value is ConditioningType.NETWORK_ONLY


def test_conditioning_type_unreadable(tmp_path):
    """Test unreadable core network metadata."""
    assert read_conditioning_type(tmp_path).value is None


def test_variable_shape_support(make_bundle):
    """Any flexible input enables variable shapes."""
    assert read_variable_shape_support(make_bundle(name="fixed")).value is False
    assert read_variable_shape_support(make_bundle(name="flex", flexible=True)).value is True
    
    zero = unet_inputs()
    zero[0]["hasShapeFlexibility"] = "0"
    bundle = make_bundle(name="zero", unet_metadata=[{"inputSchema": zero}])
    assert read_variable_shape_support(bundle).value is False
