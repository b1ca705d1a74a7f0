"""
GraphQL query strings for Shopify Admin API.
"""


def build_catalog_bulk_query(tag: str = "") -> str:
    """
    Build the inner query for a bulk export of the supplier catalog.

    Args:
        tag: Optional product tag that marks items eligible for wholesale

    Returns:
        Query document to pass to bulkOperationRunQuery
    """
    search = "status:active"
    if tag:
        search += f" AND tag:{tag}"

    return f'''
    {{
      products(query: "{search}") {{
        edges {{
          node {{
            id
            title
            descriptionHtml
            tags
            featuredImage {{
              url
            }}
            variants {{
              edges {{
                node {{
                  id
                  sku
                  price
                  inventoryQuantity
                  selectedOptions {{
                    name
                    value
                  }}
                }}
              }}
            }}
          }}
        }}
      }}
    }}
    '''


# Query to poll bulk operation status by id
BULK_OPERATION_STATUS_QUERY = '''
query($id: ID!) {
  node(id: $id) {
    ... on BulkOperation {
      id
      status
      errorCode
      objectCount
      fileSize
      url
      partialDataUrl
      type
      completedAt
    }
  }
}
'''

# Only one bulk operation per type may run on a store at a time
CURRENT_BULK_OPERATION_QUERY = '''
query($type: BulkOperationType!) {
  currentBulkOperation(type: $type) {
    id
    status
    errorCode
    objectCount
    fileSize
    url
    partialDataUrl
    type
    completedAt
  }
}
'''

PRODUCTS_BY_ID_QUERY = '''
query($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on Product {
      id
      title
      descriptionHtml
      tags
      featuredImage {
        url
      }
      variants(first: 100) {
        edges {
          node {
            id
            sku
            price
            inventoryQuantity
            selectedOptions {
              name
              value
            }
          }
        }
      }
    }
  }
}
'''

PRODUCT_VARIANTS_QUERY = '''
query($id: ID!) {
  product(id: $id) {
    id
    variants(first: 100) {
      edges {
        node {
          id
          sku
          price
          inventoryQuantity
          selectedOptions {
            name
            value
          }
        }
      }
    }
  }
}
'''

VARIANT_QUERY = '''
query($id: ID!) {
  productVariant(id: $id) {
    id
    sku
    price
    inventoryQuantity
    selectedOptions {
      name
      value
    }
    product {
      id
    }
    inventoryItem {
      id
    }
  }
}
'''

PRIMARY_LOCATION_QUERY = '''
query {
  locations(first: 1) {
    edges {
      node {
        id
      }
    }
  }
}
'''

# Paged listing of products eligible for wholesale
ELIGIBLE_PRODUCTS_QUERY = '''
query($query: String!, $cursor: String) {
  products(first: 50, after: $cursor, query: $query) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        title
        descriptionHtml
        tags
        featuredImage {
          url
        }
        variants(first: 100) {
          edges {
            node {
              id
              sku
              price
              inventoryQuantity
              selectedOptions {
                name
                value
              }
            }
          }
        }
      }
    }
  }
}
'''
