"""Collaborators wrapped by operations: toolchain, serial ports, project config, health, shell."""
