"""Project lifecycle: states, transition legality, locking, rollback and coordination.

Import from the submodules directly (``siteforge.lifecycle.machine``,
``siteforge.lifecycle.coordinator``); the models package depends on
``siteforge.lifecycle.states``.
"""
