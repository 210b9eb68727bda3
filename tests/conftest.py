"""Shared fixtures: synthetic compiled bundles."""

import json
import pytest
from pathlib import Path


SD_ENCODER_MIL = """program(1.0)
{
    func main<ios16>(tensor<fp16, [1, 3, 512, 512]> z) {
        tensor<fp16, [1, 128, 513, 513]> pad_0 = pad(x = z);
        tensor<fp16, [1, 512, 4096]> reshape_0 = reshape(x = pad_0);
        tensor<fp16, [1, 8, 64, 64]> moments = conv(x = reshape_0);
        tensor<fp16, [1, 4, 64, 64]> latent = slice(x = moments);
    } -> (latent);
}
"""

SD_DECODER_MIL = """program(1.0)
{
    func main<ios16>(tensor<fp16, [1, 4, 64, 64]> z) {
        tensor<fp16, [1, 512, 64, 64]> conv_in = conv(x = z);
        tensor<fp16, [1, 1, 4096, 4096]> attn = matmul(x = conv_in);
        tensor<fp16, [1, 3, 512, 512]> image = conv(x = attn);
    } -> (image);
}
"""

SDXL_ENCODER_MIL = """program(1.0)
{
    func main<ios16>(tensor<fp16, [1, 3, 1024, 1024]> z) {
        tensor<fp16, [1, 128, 1025, 1025]> pad_0 = pad(x = z);
        tensor<fp16, [1, 8, 128, 128]> moments = conv(x = pad_0);
    } -> (moments);
}
"""

SDXL_DECODER_MIL = """program(1.0)
{
    func main<ios16>(tensor<fp16, [1, 4, 128, 128]> z) {
        tensor<fp16, [1, 16384, 512]> attn = reshape(x = z);
        tensor<fp16, [1, 3, 1024, 1024]> image = conv(x = attn);
    } -> (image);
}
"""


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def unet_inputs(xl=False, adapter=False, controlnet=False, flexible=False):
    inputs = [
        {"name": "sample", "shape": "[2, 4, 64, 64]", "type": "MultiArray"},
        {"name": "timestep", "shape": "[2]", "type": "MultiArray"},
        {"name": "encoder_hidden_states", "shape": "[2, 768, 1, 77]", "type": "MultiArray"},
    ]
    if xl:
        inputs.append({"name": "time_ids", "shape": "[2, 6]"})
        inputs.append({"name": "text_embeds", "shape": "[2, 1280]"})
    if adapter:
        inputs.append({"name": "adapter_res_samples_00", "shape": "[2, 320, 64, 64]"})
    if controlnet:
        inputs.append({"name": "down_block_res_samples_00", "shape": "[2, 320, 64, 64]"})
    if flexible:
        inputs[0]["hasShapeFlexibility"] = "1"
    return inputs


@pytest.fixture
def make_bundle(tmp_path):
    """Factory writing a minimal bundle to disk."""

    def _make(
        name="model",
        xl=False,
        einsum=True,
        adapter=False,
        controlnet=False,
        flexible=False,
        unet_dir="Unet.mlmodelc",
        unet_metadata=None,
        decoder_metadata=None,
    ) -> Path:
        bundle = tmp_path / "models" / name
        size = 1024 if xl else 512
        latent = size // 8

        histogram = {"Ios16.conv": 10}
        if einsum:
            histogram["Ios16.einsum"] = 32

        if unet_metadata is None:
            unet_metadata = [{
                "mlProgramOperationTypeHistogram": histogram,
                "inputSchema": unet_inputs(xl, adapter, controlnet, flexible),
            }]
        _write_json(bundle / unet_dir / "metadata.json", unet_metadata)

        _write_json(bundle / "TextEncoder.mlmodelc" / "metadata.json", [{"inputSchema": []}])

        encoder = bundle / "VAEEncoder.mlmodelc"
        _write_json(encoder / "metadata.json", [{
            "inputSchema": [{"name": "z", "shape": f"[1, 3, {size}, {size}]"}],
            "outputSchema": [{"name": "latent", "shape": f"[1, 8, {latent}, {latent}]"}],
        }])
        (encoder / "model.mil").write_text(
            SDXL_ENCODER_MIL if xl else SD_ENCODER_MIL, encoding="utf-8"
        )
        (encoder / "coremldata.bin").write_bytes(b"original-encoder")

        decoder = bundle / "VAEDecoder.mlmodelc"
        if decoder_metadata is None:
            decoder_metadata = [{
                "inputSchema": [{"name": "z", "shape": f"[1, 4, {latent}, {latent}]"}],
                "outputSchema": [{"name": "image", "shape": f"[1, 3, {size}, {size}]"}],
            }]
        _write_json(decoder / "metadata.json", decoder_metadata)
        (decoder / "model.mil").write_text(
            SDXL_DECODER_MIL if xl else SD_DECODER_MIL, encoding="utf-8"
        )
        (decoder / "coremldata.bin").write_bytes(b"original-decoder")

        return bundle

    return _make


@pytest.fixture
def resources_dir(tmp_path):
    """Directory with stand-in precompiled VAE blobs."""
    resources = tmp_path / "resources"
    resources.mkdir()
    (resources / "en-coremldata.bin").write_bytes(b"flexible-encoder")
    (resources / "de-coremldata.bin").write_bytes(b"flexible-decoder")
    return resources
