"""Describes the recipe sharing domain. Recipes, meal plans and the upload demo.

Where is the logic?

- Recipes and meal plans are documents with an owner. Only the owner changes
  them. That is about it.
- Sign in is a stub. Anyone is the demo user.
- The upload demo is the odd one out. It has to fit files into a small store
  with a hard quota and never leave half an upload behind.

Everything talks to storage through something handed to it, a repository or
a key-value store, so tests can give it a throwaway one.
"""
