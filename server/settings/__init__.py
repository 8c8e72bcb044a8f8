"""Settings entry point.

Settings are split into components that are composed together with
django-split-settings. Values come from the environment (or the
``config/.env`` file) through python-decouple.
"""

from split_settings.tools import include

include(
    'components/common.py',
    'components/storages.py',
    'components/files.py',
)
