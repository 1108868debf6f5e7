"""Concrete implementations of the mnemosyne interfaces."""
