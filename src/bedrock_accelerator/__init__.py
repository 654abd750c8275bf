"""Private Bedrock endpoint republished through an NLB and Global Accelerator."""

__version__ = "0.1.0"
