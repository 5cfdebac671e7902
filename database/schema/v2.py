"""Schema v2 - Audit log and alert resolution details.

Adds the audit_logs table written alongside every ledger, assignment and
alert action, and records who resolved an alert and why.
"""
from copy import deepcopy

from .v1 import schema as v1_schema

tables = deepcopy(v1_schema['tables'])

for table in tables:
    if table['name'] == 'monitoring_alerts':
        table['columns'].extend([
            {'name': 'resolved_by', 'type': 'UUID'},
            {'name': 'resolution_notes', 'type': 'TEXT'}
        ])

tables.append({
    'name': 'audit_logs',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'actor_id', 'type': 'UUID'},
        {'name': 'action', 'type': 'TEXT', 'nullable': False},
        {'name': 'resource_type', 'type': 'TEXT', 'nullable': False},
        {'name': 'resource_id', 'type': 'UUID'},
        {'name': 'details', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_audit_logs_resource', 'columns': ['resource_type', 'resource_id']},
        {'name': 'idx_audit_logs_created', 'columns': ['created_at']}
    ]
})

schema = {
    'version': 2,
    'tables': tables,
    'migrations': [
        'ALTER TABLE monitoring_alerts ADD COLUMN IF NOT EXISTS resolved_by UUID',
        'ALTER TABLE monitoring_alerts ADD COLUMN IF NOT EXISTS resolution_notes TEXT',
        '''
        CREATE TABLE IF NOT EXISTS audit_logs (
            id UUID NOT NULL DEFAULT gen_random_uuid(),
            actor_id UUID,
            action TEXT NOT NULL,
            resource_type TEXT NOT NULL,
            resource_id UUID,
            details JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (id)
        )
        ''',
        'CREATE INDEX IF NOT EXISTS idx_audit_logs_resource ON audit_logs (resource_type, resource_id)',
        'CREATE INDEX IF NOT EXISTS idx_audit_logs_created ON audit_logs (created_at)'
    ]
}
