import importlib

import pytest

DOCUMENTED = ['capture', 'controller', 'errors', 'human', 'listing', 'page_driver', 'page_reader', 'scheduler',
              'selectors', 'service', 'session', 'settings', 'store', 'util.retry']


@pytest.mark.parametrize('name', DOCUMENTED)
def test_module_docstring_is_visible(name):
    module = importlib.import_module(f'harvester.jobfeed.{name}')
    assert module.__doc__ and module.__doc__.strip()
