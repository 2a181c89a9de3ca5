import importlib
modules = [
    'tablelock.services.lock_manager',
    'tablelock.services.renewer',
    'tablelock.services.reclaimer',
    'tablelock.lib.scheduler',
    'tablelock.cli',
]
for m in modules:
    try:
        importlib.import_module(m)
        print('import ok:', m)
    except Exception as e:
        print('import FAILED:', m, e)
        raise
print('done')
