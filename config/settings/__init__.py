"""
Settings package for daily_tasks project.

Select a module explicitly with DJANGO_SETTINGS_MODULE:
- config.settings.development (default for manage.py)
- config.settings.production
- config.settings.test (pytest)
"""
