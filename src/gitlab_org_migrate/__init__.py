"""GitLab Org Migrate

Migrate users, groups, group memberships, namespaces, and projects from one
GitLab instance to another through the REST API, with projects moved as
export archives.
"""

__version__ = '0.1.0'
__author__ = 'GitLab Migration Team'
__email__ = 'team@example.com'
