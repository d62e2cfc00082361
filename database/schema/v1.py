"""Schema v1 - Initial marketplace schema.

This version includes tables for:
- Marketplace listings with likes and watchers
- Buyer/seller transactions and their event timeline
- Social graph: follows, posts, post likes and comments
"""

LISTING_STATUSES = "('draft', 'active', 'reserved', 'sold', 'expired', 'removed', 'under_review')"
TRANSACTION_STATUSES = (
    "('pending_payment', 'payment_confirmed', 'processing', 'shipped', 'delivered', "
    "'completed', 'cancelled', 'refunded', 'disputed')"
)
TERMINAL_STATUSES = "('completed', 'cancelled', 'refunded')"

schema = {
    'version': 1,
    'functions': [
        '''
        CREATE OR REPLACE FUNCTION touch_updated_at()
        RETURNS TRIGGER
        AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        '''
    ],
    'tables': [
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'item_id', 'type': 'TEXT'},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_id', 'type': 'TEXT'},
                {'name': 'title', 'type': 'VARCHAR(255)', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'price', 'type': 'NUMERIC(12,2)', 'nullable': False, 'check': 'price > 0'},
                {'name': 'original_price', 'type': 'NUMERIC(12,2)'},
                {'name': 'currency', 'type': 'VARCHAR(3)', 'nullable': False, 'default': "'BRL'"},
                {'name': 'condition_info', 'type': 'JSONB', 'nullable': False},
                {'name': 'shipping_options', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'images', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'category', 'type': 'VARCHAR(100)', 'nullable': False},
                {'name': 'tags', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'location', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'status', 'type': 'VARCHAR(20)', 'nullable': False, 'default': "'active'",
                 'check': f'status IN {LISTING_STATUSES}'},
                {'name': 'views', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'likes', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'watchers', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_listings_seller', 'columns': ['seller_id']},
                {'name': 'idx_listings_status', 'columns': ['status']},
                {'name': 'idx_listings_category', 'columns': ['category']},
                {'name': 'idx_listings_price', 'columns': ['price']},
                {'name': 'idx_listings_created', 'columns': ['created_at DESC']}
            ]
        },
        {
            'name': 'listing_likes',
            'columns': [
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['listing_id', 'user_id'],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_listing_likes_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'listing_watchers',
            'columns': [
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['listing_id', 'user_id'],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'NUMERIC(12,2)', 'nullable': False, 'check': 'amount >= 0'},
                {'name': 'currency', 'type': 'VARCHAR(3)', 'nullable': False, 'default': "'BRL'"},
                {'name': 'fees', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'net_amount', 'type': 'NUMERIC(12,2)', 'nullable': False},
                {'name': 'status', 'type': 'VARCHAR(20)', 'nullable': False, 'default': "'pending_payment'",
                 'check': f'status IN {TRANSACTION_STATUSES}'},
                {'name': 'payment_method', 'type': 'VARCHAR(50)', 'nullable': False},
                {'name': 'payment_id', 'type': 'VARCHAR(100)'},
                {'name': 'shipping_address', 'type': 'JSONB', 'nullable': False},
                {'name': 'shipping_method', 'type': 'VARCHAR(50)'},
                {'name': 'tracking_number', 'type': 'VARCHAR(100)'},
                {'name': 'estimated_delivery', 'type': 'TIMESTAMPTZ'},
                {'name': 'actual_delivery', 'type': 'TIMESTAMPTZ'},
                {'name': 'version', 'type': 'INT8', 'nullable': False, 'default': '1'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_buyer', 'columns': ['buyer_id']},
                {'name': 'idx_transactions_seller', 'columns': ['seller_id']},
                {'name': 'idx_transactions_status', 'columns': ['status']},
                # At most one open transaction per listing
                {'name': 'idx_transactions_open_listing', 'columns': ['listing_id'], 'unique': True,
                 'where': f'status NOT IN {TERMINAL_STATUSES}'}
            ]
        },
        {
            'name': 'transaction_events',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'event_type', 'type': 'VARCHAR(50)', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'payload', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'actor', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'clock_timestamp()'}
            ],
            'foreign_keys': [
                {'columns': ['transaction_id'], 'references': 'transactions(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_transaction_events_tx_time', 'columns': ['transaction_id', 'created_at']}
            ]
        },
        {
            'name': 'user_follows',
            'columns': [
                {'name': 'follower_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'following_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['follower_id', 'following_id'],
            'checks': ['follower_id <> following_id'],
            'indexes': [
                {'name': 'idx_user_follows_following', 'columns': ['following_id']}
            ]
        },
        {
            'name': 'social_posts',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'post_type', 'type': 'VARCHAR(20)', 'nullable': False,
                 'check': "post_type IN ('outfit', 'item', 'inspiration')"},
                {'name': 'content', 'type': 'JSONB', 'nullable': False},
                {'name': 'wardrobe_item_ids', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'visibility', 'type': 'VARCHAR(20)', 'nullable': False, 'default': "'public'",
                 'check': "visibility IN ('public', 'followers', 'private')"},
                {'name': 'likes_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'comments_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_social_posts_user', 'columns': ['user_id']},
                {'name': 'idx_social_posts_visibility', 'columns': ['visibility']},
                {'name': 'idx_social_posts_created', 'columns': ['created_at DESC']}
            ]
        },
        {
            'name': 'post_likes',
            'columns': [
                {'name': 'post_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['post_id', 'user_id'],
            'foreign_keys': [
                {'columns': ['post_id'], 'references': 'social_posts(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'post_comments',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'post_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False, 'check': 'length(content) <= 500'},
                {'name': 'parent_comment_id', 'type': 'UUID'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['post_id'], 'references': 'social_posts(id)', 'on_delete': 'CASCADE'},
                {'columns': ['parent_comment_id'], 'references': 'post_comments(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_post_comments_post', 'columns': ['post_id', 'created_at']}
            ]
        }
    ],
    'triggers': [
        {'name': f'trg_{table}_updated_at', 'table': table, 'timing': 'BEFORE',
         'event': 'UPDATE', 'function_name': 'touch_updated_at'}
        for table in ('listings', 'transactions', 'social_posts', 'post_comments')
    ]
}
