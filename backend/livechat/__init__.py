"""PureTrust Live Chat - real-time support chat between site visitors and operators."""

__version__ = "1.0.0"
