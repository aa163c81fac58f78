"""wafpolicy - compile declarative firewall policies into ordered AWS WAFv2 rules."""

__version__ = "0.1.0"
