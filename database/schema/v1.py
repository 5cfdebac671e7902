"""Schema v1 - Bookings, token custody, chat and moderation work.

Creates the tables the trust & safety pipeline runs on. Balances are whole
tokens stored as INT8; CHECK constraints back the non-negative balance rule
and a partial unique index allows one active assignment per work item.
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'role', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'is_verified', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_role_created', 'columns': ['role', 'created_at', 'id']}
            ]
        },
        {
            'name': 'token_wallets',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False, 'unique': True},
                {'name': 'balance', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'escrow_balance', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'total_purchased', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'total_spent', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_token_wallets_balance', 'expression': 'balance >= 0'},
                {'name': 'chk_token_wallets_escrow_balance', 'expression': 'escrow_balance >= 0'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ]
        },
        {
            'name': 'wallet_transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'wallet_id', 'type': 'UUID', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'INT8', 'nullable': False},
                {'name': 'booking_id', 'type': 'UUID'},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'reference', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['wallet_id'], 'references': 'token_wallets(id)'}
            ],
            'indexes': [
                {'name': 'idx_wallet_transactions_wallet', 'columns': ['wallet_id', 'created_at']},
                {'name': 'idx_wallet_transactions_booking', 'columns': ['booking_id']},
                {'name': 'idx_wallet_transactions_reference', 'columns': ['reference'],
                 'unique': True, 'where': 'reference IS NOT NULL'}
            ]
        },
        {
            'name': 'bookings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'seeker_id', 'type': 'UUID', 'nullable': False},
                {'name': 'provider_id', 'type': 'UUID', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'scheduled_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'duration', 'type': 'INT8', 'nullable': False},
                {'name': 'token_amount', 'type': 'INT8', 'nullable': False},
                {'name': 'assigned_employee_id', 'type': 'UUID'},
                {'name': 'message_seq', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'notes', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'completed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'cancelled_at', 'type': 'TIMESTAMPTZ'}
            ],
            'checks': [
                {'name': 'chk_bookings_token_amount', 'expression': 'token_amount > 0'},
                {'name': 'chk_bookings_duration', 'expression': 'duration BETWEEN 1 AND 8'}
            ],
            'foreign_keys': [
                {'columns': ['seeker_id'], 'references': 'users(id)'},
                {'columns': ['provider_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_bookings_provider_scheduled', 'columns': ['provider_id', 'scheduled_at']},
                {'name': 'idx_bookings_seeker', 'columns': ['seeker_id']},
                {'name': 'idx_bookings_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'verifications',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'employee_id', 'type': 'UUID'},
                {'name': 'assigned_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ]
        },
        {
            'name': 'messages',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'booking_id', 'type': 'UUID', 'nullable': False},
                {'name': 'sender_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seq', 'type': 'INT8', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False, 'default': "''"},
                {'name': 'media_url', 'type': 'TEXT'},
                {'name': 'is_read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'is_flagged', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'flag_reason', 'type': 'TEXT'},
                {'name': 'risk_score', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'policy_version', 'type': 'TEXT'},
                {'name': 'is_system_message', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['booking_id'], 'references': 'bookings(id)'}
            ],
            'indexes': [
                {'name': 'idx_messages_booking_seq', 'columns': ['booking_id', 'seq'], 'unique': True},
                {'name': 'idx_messages_flagged_sender', 'columns': ['sender_id'], 'where': 'is_flagged'},
                {'name': 'idx_messages_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'assignments',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'employee_id', 'type': 'UUID', 'nullable': False},
                {'name': 'item_id', 'type': 'UUID', 'nullable': False},
                {'name': 'item_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'assigned_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'completed_at', 'type': 'TIMESTAMPTZ'}
            ],
            'foreign_keys': [
                {'columns': ['employee_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_assignments_active_item', 'columns': ['item_id', 'item_type'],
                 'unique': True, 'where': 'is_active'},
                {'name': 'idx_assignments_employee_active', 'columns': ['employee_id', 'item_type'],
                 'where': 'is_active'}
            ]
        },
        {
            'name': 'round_robin_counters',
            'columns': [
                {'name': 'assignment_type', 'type': 'TEXT', 'primary_key': True},
                {'name': 'last_assigned_id', 'type': 'UUID'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'monitoring_alerts',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'booking_id', 'type': 'UUID', 'nullable': False},
                {'name': 'message_id', 'type': 'UUID', 'nullable': False},
                {'name': 'employee_id', 'type': 'UUID'},
                {'name': 'risk_score', 'type': 'INT8', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_resolved', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'resolved_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['booking_id'], 'references': 'bookings(id)'},
                {'columns': ['message_id'], 'references': 'messages(id)'}
            ],
            'indexes': [
                {'name': 'idx_alerts_employee_open', 'columns': ['employee_id'], 'where': 'NOT is_resolved'},
                {'name': 'idx_alerts_booking', 'columns': ['booking_id']}
            ]
        }
    ]
}
