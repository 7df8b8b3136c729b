"""Build tree-sitter grammars into native and WebAssembly parsers."""

__version__ = "0.1.0"
