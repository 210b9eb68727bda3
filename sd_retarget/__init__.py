"""Core ML Stable Diffusion bundle introspection and resolution retargeting"""

__version__ = "0.1.0"
