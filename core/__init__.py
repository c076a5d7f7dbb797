"""core/ -- Kernel layer for Stockroom: settings and the error taxonomy.

Layer rule: core/ imports only stdlib + third-party libraries. Every other
package may import from core/, never the other way around.
"""
